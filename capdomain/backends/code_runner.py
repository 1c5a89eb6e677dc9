"""Ephemeral code runner with an optional bubblewrap sandbox."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from capdomain.errors import ExecutionError, NotFoundError
from capdomain.schemas import CodeRunResult, GeneratedFile, Language

logger = logging.getLogger(__name__)

# Output limits
MAX_OUTPUT_BYTES = 64 * 1024  # 64KB

# Default timeout
DEFAULT_TIMEOUT = 30  # seconds

DEFAULT_SCRATCH_DIR = Path("/tmp/code-executor")
DOWNLOAD_PREFIX = "/download/"

# Check if bubblewrap is available
BWRAP_PATH = shutil.which("bwrap")

FILE_EXTENSIONS = {
    Language.PYTHON: ".py",
    Language.NODEJS: ".js",
}

INTERPRETERS = {
    Language.PYTHON: "python3",
    Language.NODEJS: "node",
}


def _resolve_interpreter(language: Language) -> str:
    """Find the interpreter binary for a language."""
    found = shutil.which(INTERPRETERS[language])
    if found:
        return found
    if language == Language.PYTHON and sys.executable:
        return sys.executable
    raise ExecutionError(f"Interpreter not available: {INTERPRETERS[language]}")


def _build_bwrap_command(argv: list[str], scratch_dir: str) -> list[str]:
    """Wrap argv in bubblewrap with a read-only root and a writable scratch dir."""
    return [
        BWRAP_PATH,
        # Read-only bind the entire filesystem
        "--ro-bind", "/", "/",
        "--proc", "/proc",
        "--dev", "/dev",
        "--tmpfs", "/tmp",
        # Writable scratch dir, bound after the /tmp tmpfs so it stays visible
        "--bind", scratch_dir, scratch_dir,
        "--chdir", scratch_dir,
        "--unshare-net",
        "--die-with-parent",
        "--",
        *argv,
    ]


def _truncate_output(output: str, max_bytes: int = MAX_OUTPUT_BYTES) -> str:
    """Truncate output to max_bytes."""
    if len(output.encode("utf-8", errors="replace")) <= max_bytes:
        return output

    # Truncate by bytes, preserving valid UTF-8
    encoded = output.encode("utf-8", errors="replace")[:max_bytes]
    truncated = encoded.decode("utf-8", errors="ignore")
    return truncated + "\n... [output truncated]"


def _created_at(path: Path) -> str:
    stat = path.stat()
    created = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat()


class CodeRunner:
    """Runs interpreted snippets in a shared, cumulative scratch directory."""

    def __init__(
        self,
        scratch_dir: Path | str = DEFAULT_SCRATCH_DIR,
        timeout_seconds: float = DEFAULT_TIMEOUT,
        use_sandbox: bool = True,
    ):
        self.scratch_dir = Path(scratch_dir)
        self.timeout_seconds = timeout_seconds
        self.use_sandbox = use_sandbox
        self._name_lock = threading.Lock()

    def _new_source_path(self, language: Language) -> Path:
        with self._name_lock:
            stamp = int(time.time() * 1000)
            name = f"{language.value}_{stamp}_{uuid.uuid4().hex[:8]}{FILE_EXTENSIONS[language]}"
        return self.scratch_dir / name

    def run(self, language: Language | str, code: str) -> CodeRunResult:
        """Execute a snippet and collect its output and the scratch-dir files.

        Args:
            language: Interpreter to use
            code: Source text

        Returns:
            CodeRunResult for a zero exit status

        Raises:
            ExecutionError: On timeout, non-zero exit, or a missing interpreter;
                the error carries the interpreter's stderr
        """
        language = Language(language)
        if not code or not code.strip():
            raise ExecutionError(f"No code provided for {language.value}")

        interpreter = _resolve_interpreter(language)

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        scratch = str(self.scratch_dir.resolve())
        source_path = self._new_source_path(language)
        source_path.write_text(code, encoding="utf-8")

        # Interpreter and path stay separate argv elements, no shell involved.
        argv = [interpreter, str(source_path.resolve())]

        was_sandboxed = False
        if self.use_sandbox and BWRAP_PATH:
            argv = _build_bwrap_command(argv, scratch)
            was_sandboxed = True
        elif self.use_sandbox:
            logger.warning("bubblewrap not available, running without sandbox")

        logger.info(f"Executing {language.value} snippet {source_path.name} (sandboxed: {was_sandboxed})")

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                timeout=self.timeout_seconds,
                text=True,
                cwd=scratch,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"{language.value} snippet timed out after {self.timeout_seconds}s")
            stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise ExecutionError(
                f"Execution timed out after {self.timeout_seconds} seconds",
                stderr=_truncate_output(stderr),
                timed_out=True,
            ) from e
        except OSError as e:
            logger.error(f"Failed to start {language.value} interpreter: {e}")
            raise ExecutionError(f"Failed to start interpreter: {e}") from e

        stdout = _truncate_output(completed.stdout)
        stderr = _truncate_output(completed.stderr)

        if completed.returncode != 0:
            logger.warning(f"{language.value} snippet exited with {completed.returncode}")
            raise ExecutionError(
                stderr.strip() or f"Process exited with code {completed.returncode}",
                stderr=stderr,
                exit_code=completed.returncode,
            )

        logger.info(f"Successfully executed {language.value} snippet {source_path.name}")
        return CodeRunResult(
            language=language,
            stdout=stdout,
            stderr=stderr,
            exit_code=completed.returncode,
            was_sandboxed=was_sandboxed,
            files=self.list_files(),
            execution_time=datetime.now(timezone.utc).isoformat(),
        )

    def list_files(self) -> list[GeneratedFile]:
        """List every file in the scratch directory, newest first."""
        if not self.scratch_dir.is_dir():
            return []

        files = []
        for path in self.scratch_dir.iterdir():
            try:
                if not path.is_file():
                    continue
                files.append(
                    GeneratedFile(
                        name=path.name,
                        path=str(path),
                        size=path.stat().st_size,
                        created=_created_at(path),
                        download_url=f"{DOWNLOAD_PREFIX}{quote(path.name)}",
                    )
                )
            except OSError as e:
                logger.error(f"Error scanning generated file {path}: {e}")

        files.sort(key=lambda f: f.created, reverse=True)
        return files

    def resolve_download(self, filename: str) -> Path:
        """Map a download name to a file inside the scratch directory.

        Raises:
            ValueError: If the name escapes the scratch directory
            NotFoundError: If no such file exists
        """
        scratch = self.scratch_dir.resolve()
        candidate = (scratch / filename).resolve()
        if candidate.parent != scratch:
            raise ValueError(f"Invalid file name: {filename}")
        if not candidate.exists():
            raise NotFoundError(f"File not found: {filename}")
        if not candidate.is_file():
            raise ValueError(f"Not a file: {filename}")
        return candidate


def check_sandbox_available() -> bool:
    """Check if bubblewrap sandbox is available."""
    return BWRAP_PATH is not None
