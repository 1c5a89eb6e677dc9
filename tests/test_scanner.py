"""Tests for the domains directory scanner."""

import pytest

from capdomain.errors import ConfigError
from capdomain.scanner import (
    normalize_relative_path,
    scan_backend_configs,
    scan_procedure_files,
    scan_side_files,
)

from conftest import write_backend_config, write_procedure


class TestScanProcedureFiles:
    """Test procedure document discovery."""

    def test_finds_documents_sorted(self, domains_dir):
        """Every folder with a SKILL.md is found, ordered by path."""
        results = scan_procedure_files(domains_dir)

        assert [r.relative_path for r in results] == ["skills/broken", "skills/code-reviewer"]
        assert all(r.full_path.name == "SKILL.md" for r in results)

    def test_skips_folder_without_document(self, domains_dir):
        """Folders lacking SKILL.md are ignored."""
        (domains_dir / "skills" / "empty").mkdir()

        results = scan_procedure_files(domains_dir)

        assert "skills/empty" not in [r.relative_path for r in results]

    def test_skips_hidden_folders(self, domains_dir):
        """Hidden folders are never scanned."""
        write_procedure(domains_dir, ".draft", "---\nname: draft\ndescription: d\n---\n")

        results = scan_procedure_files(domains_dir)

        assert all(".draft" not in r.relative_path for r in results)

    def test_missing_root_returns_empty(self, tmp_path):
        """An absent domains root yields no documents."""
        assert scan_procedure_files(tmp_path / "nope") == []

    def test_root_without_skills_dir(self, tmp_path):
        """A root with no skills/ directory yields no documents."""
        assert scan_procedure_files(tmp_path) == []

    def test_root_is_file_raises(self, tmp_path):
        """A domains root that is a file is a config error."""
        root = tmp_path / "domains"
        root.write_text("not a dir")

        with pytest.raises(ConfigError):
            scan_procedure_files(root)


class TestScanBackendConfigs:
    """Test backend config unit discovery."""

    def test_finds_json_units_only(self, tmp_path):
        """Only *.json files under mcps/ are returned."""
        write_backend_config(tmp_path, "b.json", {"id": "b"})
        write_backend_config(tmp_path, "a.json", {"id": "a"})
        (tmp_path / "mcps" / "notes.txt").write_text("ignore me")

        results = scan_backend_configs(tmp_path)

        assert [r.relative_path for r in results] == ["mcps/a.json", "mcps/b.json"]

    def test_missing_mcps_dir(self, domains_dir):
        """A root without mcps/ yields no configs."""
        assert scan_backend_configs(domains_dir) == []


class TestSideFiles:
    """Test probing of a procedure's sibling directories."""

    def test_lists_present_directories(self, domains_dir):
        """references/ keeps text documents only; absent assets/ is None."""
        doc = domains_dir / "skills" / "code-reviewer" / "SKILL.md"

        side = scan_side_files(doc)

        assert [p.rsplit("/", 1)[-1] for p in side.references] == ["checklist.md"]
        assert [p.rsplit("/", 1)[-1] for p in side.scripts] == ["lint.sh"]
        assert side.assets is None

    def test_no_side_directories(self, domains_dir):
        """A procedure with no siblings reports None for each."""
        doc = domains_dir / "skills" / "broken" / "SKILL.md"

        side = scan_side_files(doc)

        assert side.references is None
        assert side.scripts is None
        assert side.assets is None


class TestNormalizeRelativePath:
    """Test id normalization."""

    def test_backslashes_become_slashes(self):
        assert normalize_relative_path("skills\\code-reviewer") == "skills/code-reviewer"

    def test_strips_outer_slashes(self):
        assert normalize_relative_path("/skills/x/") == "skills/x"
