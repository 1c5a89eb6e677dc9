"""Tests for the local procedure catalog."""

import pytest

from capdomain.backends.procedures import ProcedureCatalog, parse_front_matter, read_header
from capdomain.errors import ConfigError, NotFoundError

from conftest import write_procedure


class TestParseFrontMatter:
    """Test splitting documents into header and body."""

    def test_header_and_body(self):
        """A delimited YAML header is parsed and the body follows it."""
        header, body = parse_front_matter("---\nname: a\ndescription: b\n---\n\n# Title\n")

        assert header == {"name": "a", "description": "b"}
        assert body == "# Title\n"

    def test_no_header(self):
        """Documents without a leading delimiter have an empty header."""
        text = "# Just a body\n"

        assert parse_front_matter(text) == ({}, text)

    def test_unterminated_header(self):
        """A header with no closing delimiter is treated as body."""
        text = "---\nname: a\n"

        assert parse_front_matter(text) == ({}, text)

    def test_header_not_a_mapping(self):
        """A header that parses to a list is rejected."""
        with pytest.raises(ConfigError):
            parse_front_matter("---\n- a\n- b\n---\nbody\n")

    def test_invalid_yaml(self):
        """Malformed YAML is a config error."""
        with pytest.raises(ConfigError):
            parse_front_matter("---\nname: [unclosed\n---\nbody\n")


class TestReadHeader:
    """Test header-only reads."""

    def test_reads_header(self, domains_dir):
        header = read_header(domains_dir / "skills" / "code-reviewer" / "SKILL.md")

        assert header["name"] == "code-reviewer"
        assert header["version"] == 2

    def test_no_front_matter(self, tmp_path):
        doc = tmp_path / "SKILL.md"
        doc.write_text("plain text\n")

        assert read_header(doc) == {}


class TestProcedureCatalog:
    """Test metadata loading and on-demand content."""

    @pytest.fixture
    def catalog(self, domains_dir):
        catalog = ProcedureCatalog(domains_dir)
        catalog.load_all_metadata()
        return catalog

    def test_loads_valid_procedures_only(self, catalog):
        """Documents missing a description are skipped."""
        metadata = catalog.get_all_metadata()

        assert [m.name for m in metadata] == ["code-reviewer"]
        assert metadata[0].id == "skills/code-reviewer"
        assert metadata[0].description == "Reviews code"

    def test_invalid_yaml_is_skipped(self, domains_dir):
        """A procedure whose header does not parse is skipped, not fatal."""
        write_procedure(domains_dir, "bad-yaml", "---\nname: [oops\n---\nbody\n")
        catalog = ProcedureCatalog(domains_dir)

        loaded = catalog.load_all_metadata()

        assert [m.name for m in loaded] == ["code-reviewer"]

    def test_non_utf8_document_is_skipped(self, domains_dir):
        """A document that is not valid UTF-8 is skipped, not fatal."""
        doc = write_procedure(domains_dir, "latin1", "")
        doc.write_bytes(b"---\nname: caf\xe9\ndescription: Coffee\n---\n")
        catalog = ProcedureCatalog(domains_dir)

        loaded = catalog.load_all_metadata()

        assert [m.name for m in loaded] == ["code-reviewer"]

    def test_find_by_name(self, catalog):
        assert catalog.find_by_name("code-reviewer").id == "skills/code-reviewer"
        assert catalog.find_by_name("missing") is None

    def test_load_content(self, catalog):
        """Content carries the body, full header and side files."""
        content = catalog.load_content("skills/code-reviewer")

        assert content.body.startswith("# Code Reviewer")
        assert content.header["version"] == 2
        assert content.references[0].endswith("checklist.md")
        assert content.scripts[0].endswith("lint.sh")
        assert content.assets is None

    def test_load_content_rereads_disk(self, catalog, domains_dir):
        """Edits to the body are visible without a refresh."""
        doc = domains_dir / "skills" / "code-reviewer" / "SKILL.md"
        doc.write_text("---\nname: code-reviewer\ndescription: Reviews code\n---\nUpdated body\n")

        assert catalog.load_content("skills/code-reviewer").body == "Updated body\n"

    def test_load_content_unknown_id(self, catalog):
        with pytest.raises(NotFoundError):
            catalog.load_content("skills/missing")

    def test_load_content_deleted_document(self, catalog, domains_dir):
        """A document removed after loading metadata reports not found."""
        (domains_dir / "skills" / "code-reviewer" / "SKILL.md").unlink()

        with pytest.raises(NotFoundError):
            catalog.load_content("skills/code-reviewer")

    def test_load_content_non_utf8_document(self, catalog, domains_dir):
        """A document rewritten with invalid UTF-8 reports not found."""
        doc = domains_dir / "skills" / "code-reviewer" / "SKILL.md"
        doc.write_bytes(b"---\nname: code-reviewer\ndescription: Reviews code\n---\n\xff\xfe\n")

        with pytest.raises(NotFoundError, match="unreadable"):
            catalog.load_content("skills/code-reviewer")

    def test_refresh_picks_up_new_documents(self, catalog, domains_dir):
        """Refresh replaces the metadata cache."""
        write_procedure(domains_dir, "summarizer", "---\nname: summarizer\ndescription: Summarizes\n---\n")

        catalog.refresh()

        assert sorted(m.name for m in catalog.get_all_metadata()) == ["code-reviewer", "summarizer"]

    def test_missing_root_loads_nothing(self, tmp_path):
        catalog = ProcedureCatalog(tmp_path / "absent")

        assert catalog.load_all_metadata() == []
