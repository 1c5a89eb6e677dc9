"""Local procedure catalog with two-phase (metadata, then content) loading."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

import yaml

from capdomain.errors import ConfigError, NotFoundError
from capdomain.scanner import PROCEDURE_DOC_NAME, normalize_relative_path, scan_procedure_files, scan_side_files
from capdomain.schemas import ProcedureContent, ProcedureMetadata

logger = logging.getLogger(__name__)

FRONT_MATTER_DELIMITER = "---"


def _load_header(header_text: str, source: str) -> dict[str, Any]:
    try:
        header = yaml.safe_load(header_text) if header_text.strip() else {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid front matter in {source}: {e}") from e
    if header is None:
        return {}
    if not isinstance(header, dict):
        raise ConfigError(f"Front matter is not a mapping in {source}")
    return header


def parse_front_matter(text: str, source: str = "<string>") -> tuple[dict[str, Any], str]:
    """Split a document into its YAML header and body.

    A document without a leading `---` line has an empty header.

    Raises:
        ConfigError: If the header is not valid YAML or not a mapping
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        return {}, text

    for index in range(1, len(lines)):
        if lines[index].strip() == FRONT_MATTER_DELIMITER:
            header = _load_header("".join(lines[1:index]), source)
            body = "".join(lines[index + 1:])
            return header, body.lstrip("\n")

    # Unterminated header: treat the whole document as body.
    return {}, text


def read_header(path: Path) -> dict[str, Any]:
    """Read only the front matter of a document, stopping at its closing delimiter.

    Raises:
        ConfigError: If the header is not valid YAML or not a mapping
        OSError: If the file cannot be read
        UnicodeDecodeError: If the file is not valid UTF-8
    """
    header_lines = []
    with open(path, encoding="utf-8") as f:
        first = f.readline()
        if first.strip() != FRONT_MATTER_DELIMITER:
            return {}
        for line in f:
            if line.strip() == FRONT_MATTER_DELIMITER:
                return _load_header("".join(header_lines), str(path))
            header_lines.append(line)
    return {}


class ProcedureCatalog:
    """Catalog of locally documented procedures.

    Metadata (name, description) is loaded eagerly for every document.
    Full content is re-read from disk on every load_content call.
    """

    def __init__(self, domains_path: Path | str):
        self.domains_path = Path(domains_path).resolve()
        self._metadata: dict[str, ProcedureMetadata] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_procedure_id(relative_path: str) -> str:
        """Derive a platform-independent id from a procedure's relative path."""
        return normalize_relative_path(relative_path)

    def load_all_metadata(self) -> list[ProcedureMetadata]:
        """Load name and description for every procedure document.

        Documents missing either field, or whose header cannot be parsed or
        read, are skipped with a log entry. The result replaces any prior load.

        Raises:
            ConfigError: If the domains root is not a directory
        """
        logger.info("Loading procedure metadata...")
        loaded: dict[str, ProcedureMetadata] = {}

        for scanned in scan_procedure_files(self.domains_path):
            try:
                header = read_header(scanned.full_path)
            except ConfigError as e:
                logger.warning(str(e))
                continue
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Error reading procedure {scanned.full_path}: {e}")
                continue

            name = header.get("name")
            description = header.get("description")
            if not name or not description:
                logger.warning(f"Procedure missing name or description: {scanned.full_path}")
                continue

            procedure_id = self.make_procedure_id(scanned.relative_path)
            loaded[procedure_id] = ProcedureMetadata(
                id=procedure_id,
                name=str(name),
                description=str(description).strip(),
                path=scanned.relative_path,
            )

        with self._lock:
            self._metadata = loaded

        logger.info(f"Loaded {len(loaded)} procedure metadata")
        return list(loaded.values())

    def load_content(self, procedure_id: str) -> ProcedureContent:
        """Load the full content of one procedure.

        Raises:
            NotFoundError: If the id is unknown or the document is unreadable
            ConfigError: If the document's header no longer parses
        """
        logger.debug(f"Loading procedure content: {procedure_id}")

        metadata = self.get_metadata(procedure_id)
        if metadata is None:
            raise NotFoundError(f"Procedure not found: {procedure_id}")

        doc_path = self.domains_path / metadata.path / PROCEDURE_DOC_NAME
        try:
            text = doc_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error loading procedure content {procedure_id}: {e}")
            raise NotFoundError(f"Procedure document unreadable: {procedure_id}") from e

        header, body = parse_front_matter(text, str(doc_path))
        side_files = scan_side_files(doc_path)

        return ProcedureContent(
            metadata=metadata,
            header=header,
            body=body,
            references=side_files.references,
            scripts=side_files.scripts,
            assets=side_files.assets,
        )

    def refresh(self) -> list[ProcedureMetadata]:
        """Discard the metadata cache and reload it."""
        logger.info("Refreshing procedure metadata...")
        with self._lock:
            self._metadata = {}
        return self.load_all_metadata()

    def get_metadata(self, procedure_id: str) -> ProcedureMetadata | None:
        with self._lock:
            return self._metadata.get(procedure_id)

    def get_all_metadata(self) -> list[ProcedureMetadata]:
        """Get every cached procedure, ordered by id."""
        with self._lock:
            return list(self._metadata.values())

    def find_by_name(self, name: str) -> ProcedureMetadata | None:
        """Get the first cached procedure with the given name."""
        for metadata in self.get_all_metadata():
            if metadata.name == name:
                return metadata
        return None
