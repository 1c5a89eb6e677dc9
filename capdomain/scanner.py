"""Directory scanner that finds procedure documents and backend config units."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from capdomain.errors import ConfigError

logger = logging.getLogger(__name__)

PROCEDURES_DIR = "skills"
PROCEDURE_DOC_NAME = "SKILL.md"
BACKENDS_DIR = "mcps"
BACKEND_CONFIG_SUFFIX = ".json"

REFERENCE_SUFFIXES = {".md", ".txt"}

# Default exclusion patterns
DEFAULT_EXCLUDES = {".venv", "node_modules", "__pycache__", ".git", ".tox", "dist", "build"}


@dataclass(frozen=True)
class ScannedFile:
    """A candidate file found under the domains root."""

    relative_path: str
    full_path: Path


@dataclass
class SideFiles:
    """Sibling directories of a procedure document (None when absent)."""

    references: list[str] | None = None
    scripts: list[str] | None = None
    assets: list[str] | None = None


def normalize_relative_path(path: str | Path) -> str:
    """Normalize a relative path so ids are platform-independent."""
    return str(path).replace("\\", "/").strip("/")


def _is_excluded(path: Path) -> bool:
    """Check if a path is hidden or in an excluded directory."""
    return path.name in DEFAULT_EXCLUDES or path.name.startswith(".")


def _check_root(root: Path) -> bool:
    """Return True when root is a usable directory, False when it is absent."""
    if not root.exists():
        logger.warning(f"Domains directory does not exist: {root}")
        return False
    if not root.is_dir():
        raise ConfigError(f"Domains path is not a directory: {root}")
    return True


def scan_procedure_files(root: Path | str) -> list[ScannedFile]:
    """Find every procedure document under <root>/skills/<folder>/SKILL.md.

    Args:
        root: Domains root directory

    Returns:
        Scanned files sorted by relative path; relative_path is the
        procedure's directory, e.g. "skills/code-reviewer"

    Raises:
        ConfigError: If root exists but is not a directory
    """
    root = Path(root)
    if not _check_root(root):
        return []

    procedures_path = root / PROCEDURES_DIR
    if not procedures_path.is_dir():
        return []

    results = []
    for folder in sorted(procedures_path.iterdir()):
        if not folder.is_dir() or _is_excluded(folder):
            continue
        doc_path = folder / PROCEDURE_DOC_NAME
        if doc_path.is_file():
            results.append(
                ScannedFile(
                    relative_path=normalize_relative_path(folder.relative_to(root).as_posix()),
                    full_path=doc_path,
                )
            )
        else:
            logger.debug(f"No {PROCEDURE_DOC_NAME} in {folder}")

    return results


def scan_backend_configs(root: Path | str) -> list[ScannedFile]:
    """Find every backend config unit under <root>/mcps/*.json.

    Raises:
        ConfigError: If root exists but is not a directory
    """
    root = Path(root)
    if not _check_root(root):
        return []

    backends_path = root / BACKENDS_DIR
    if not backends_path.is_dir():
        return []

    return [
        ScannedFile(
            relative_path=normalize_relative_path(config_path.relative_to(root).as_posix()),
            full_path=config_path,
        )
        for config_path in sorted(backends_path.iterdir())
        if config_path.is_file() and config_path.suffix == BACKEND_CONFIG_SUFFIX
    ]


def _list_dir(directory: Path, suffixes: set[str] | None = None) -> list[str] | None:
    """List files in directory, or None if the directory does not exist."""
    if not directory.is_dir():
        return None
    return [
        str(path)
        for path in sorted(directory.iterdir())
        if path.is_file() and (suffixes is None or path.suffix.lower() in suffixes)
    ]


def scan_side_files(doc_path: Path | str) -> SideFiles:
    """Probe the references/, scripts/ and assets/ siblings of a procedure document."""
    procedure_dir = Path(doc_path).parent
    return SideFiles(
        references=_list_dir(procedure_dir / "references", REFERENCE_SUFFIXES),
        scripts=_list_dir(procedure_dir / "scripts"),
        assets=_list_dir(procedure_dir / "assets"),
    )
