"""Capability registry: one namespace over procedures, remote tools and code execution."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Union

from pydantic import ValidationError
from capdomain.auth import CredentialManager
from capdomain.backends.code_runner import CodeRunner
from capdomain.backends.procedures import ProcedureCatalog
from capdomain.backends.remote_tools import RemoteToolDirectory
from capdomain.config import Settings, get_settings
from capdomain.errors import (
    CapabilityBlockedError,
    CapabilityError,
    ExecutionError,
    NotFoundError,
    RegistryError,
)
from capdomain.policies import ConcurrencyMode, PolicyId, get_policy, is_kind_allowed
from capdomain.schemas import (
    CapabilityDetail,
    CapabilityKind,
    CapabilitySummary,
    CodeDetail,
    ExecuteItem,
    ExecuteResult,
    Language,
    ProcedureDetail,
    ProcedureMetadata,
    RegistryState,
    RegistryStats,
    ToolDescriptor,
    ToolDetail,
)

logger = logging.getLogger(__name__)


# --- Resolved capability variants ---


@dataclass(frozen=True)
class ProcedureTarget:
    metadata: ProcedureMetadata
    kind: CapabilityKind = CapabilityKind.SKILL


@dataclass(frozen=True)
class ToolTarget:
    tool: ToolDescriptor
    kind: CapabilityKind = CapabilityKind.TOOL


@dataclass(frozen=True)
class CodeTarget:
    name: str
    description: str
    language: Language
    kind: CapabilityKind = CapabilityKind.CODE


ResolvedCapability = Union[ProcedureTarget, ToolTarget, CodeTarget]

CODE_CAPABILITIES: dict[str, CodeTarget] = {
    "execute-python": CodeTarget(
        name="execute-python",
        description="Execute Python code and return result",
        language=Language.PYTHON,
    ),
    "execute-nodejs": CodeTarget(
        name="execute-nodejs",
        description="Execute Node.js code and return result",
        language=Language.NODEJS,
    ),
}

CATALOG_HEADER = """# Capability

## Usage

When users ask you to perform tasks, check if any of the available capabilities below can help complete the task more effectively. Capabilities provide specialized skills, remote tools and domain knowledge.

How to use capabilities:
- Get details: POST /capability with {"capabilities": ["code-reviewer", "search"]}
- Execute: POST /execute with [{"name": "code-reviewer", "input": {...}}, {"name": "search", "input": {...}}]

Usage notes:
- Only use capabilities listed below
- Each capability invocation is stateless

## Available Capabilities

"""


def _one_line(text: str) -> str:
    return " ".join(text.split())


def _render_entry(entry: CapabilitySummary) -> str:
    return f"- name: {entry.name}\n  description: {_one_line(entry.description)}\n\n"


class CapabilityRegistry:
    """Merges the procedure catalog and the remote tool directory into one namespace.

    Names resolve in a fixed order: local procedure, then remote tool (by
    qualified id, then by bare name), then a code-execution pseudo-capability.
    """

    def __init__(
        self,
        procedures: ProcedureCatalog,
        remote: RemoteToolDirectory,
        runner: CodeRunner,
        policy_id: PolicyId | str = PolicyId.DEFAULT,
    ):
        self.procedures = procedures
        self.remote = remote
        self.runner = runner
        self.policy = get_policy(policy_id)
        self._state = RegistryState.UNINITIALIZED
        self._init_lock = threading.Lock()
        self._resolvers: list[Callable[[str], ResolvedCapability | None]] = [
            self._resolve_procedure,
            self._resolve_tool,
            self._resolve_code,
        ]

    @classmethod
    def from_settings(cls, settings: Settings) -> CapabilityRegistry:
        """Build a registry with every backend configured from settings."""
        remote = RemoteToolDirectory(
            settings.domains_path,
            timeout=settings.remote_timeout_seconds,
        )
        return cls(
            procedures=ProcedureCatalog(settings.domains_path),
            remote=remote,
            runner=CodeRunner(
                scratch_dir=settings.scratch_dir,
                timeout_seconds=settings.code_timeout_seconds,
                use_sandbox=settings.use_sandbox,
            ),
            policy_id=settings.policy_id,
        )

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def credentials(self) -> CredentialManager:
        return self.remote.credentials

    # --- Lifecycle ---

    def _do_initialize(self) -> None:
        logger.info("Initializing capability registry...")
        self._state = RegistryState.INITIALIZING
        try:
            self.procedures.load_all_metadata()
            self.remote.load_configs()
            self.remote.discover_tools()
            self._state = RegistryState.READY
        except (CapabilityError, OSError) as e:
            logger.error(f"Failed to initialize capability registry: {e}")
            raise RegistryError(f"Failed to initialize capability registry: {e}") from e
        finally:
            if self._state != RegistryState.READY:
                self._state = RegistryState.UNINITIALIZED

        logger.info("Capability registry initialized successfully")

    def initialize(self) -> None:
        """Load procedure metadata, then backend configs and their tools.

        A second call is a no-op. A failure leaves the registry uninitialized.

        Raises:
            RegistryError: If the sources cannot be loaded at all
        """
        with self._init_lock:
            if self._state == RegistryState.READY:
                logger.warning("Capability registry already initialized")
                return
            self._do_initialize()

    def _ensure_initialized(self) -> None:
        if self._state == RegistryState.READY:
            return
        with self._init_lock:
            if self._state != RegistryState.READY:
                self._do_initialize()

    def refresh(self) -> None:
        """Reload procedure metadata and rediscover remote tools.

        Raises:
            RegistryError: If either source fails to reload
        """
        self._ensure_initialized()
        logger.info("Refreshing capabilities...")
        try:
            self.procedures.refresh()
            self.remote.refresh_tools()
        except (CapabilityError, OSError) as e:
            logger.error(f"Failed to refresh capabilities: {e}")
            raise RegistryError(f"Failed to refresh capabilities: {e}") from e
        logger.info("Capabilities refreshed successfully")

    # --- Resolution ---

    def _resolve_procedure(self, name: str) -> ProcedureTarget | None:
        metadata = self.procedures.find_by_name(name) or self.procedures.get_metadata(name)
        return ProcedureTarget(metadata) if metadata else None

    def _resolve_tool(self, name: str) -> ToolTarget | None:
        tool = self.remote.get_tool(name)
        if tool is None:
            matches = self.remote.find_tools_by_name(name)
            tool = matches[0] if matches else None
        return ToolTarget(tool) if tool else None

    def _resolve_code(self, name: str) -> CodeTarget | None:
        return CODE_CAPABILITIES.get(name)

    def resolve(self, name: str) -> ResolvedCapability | None:
        """Resolve a capability name to exactly one implementation, or None."""
        self._ensure_initialized()
        for resolver in self._resolvers:
            target = resolver(name)
            if target is not None:
                return target
        return None

    def capability_exists(self, name: str) -> bool:
        return self.resolve(name) is not None

    # --- Listing ---

    def list_entries(self) -> list[CapabilitySummary]:
        """List every procedure, every discovered tool and the code capabilities.

        A tool is listed under its bare name unless another tool or a procedure
        shares that name; then its qualified id is used. A procedure whose name
        repeats an earlier one is listed under its id.
        """
        self._ensure_initialized()
        procedures = self.procedures.get_all_metadata()
        tools = self.remote.get_all_tools()

        procedure_names = {p.name for p in procedures}
        tool_name_counts = Counter(tool.name for tool in tools)

        entries = []
        listed_procedures: set[str] = set()
        for p in procedures:
            # Only the first procedure with a name is reachable by it.
            name = p.id if p.name in listed_procedures else p.name
            listed_procedures.add(p.name)
            entries.append(CapabilitySummary(name=name, description=p.description, kind=CapabilityKind.SKILL))

        for tool in tools:
            unique = tool_name_counts[tool.name] == 1 and tool.name not in procedure_names
            entries.append(
                CapabilitySummary(
                    name=tool.name if unique else tool.id,
                    description=tool.description,
                    kind=CapabilityKind.TOOL,
                )
            )
        # Code capabilities resolve last, so a same-named procedure or tool shadows them.
        entries.extend(
            CapabilitySummary(name=code.name, description=code.description, kind=CapabilityKind.CODE)
            for code in CODE_CAPABILITIES.values()
            if code.name not in procedure_names and code.name not in tool_name_counts
        )
        return entries

    def list_capabilities(self) -> str:
        """Render the merged catalog as markdown for an agent to read."""
        markdown = CATALOG_HEADER
        code_entries = []
        for entry in self.list_entries():
            if entry.kind == CapabilityKind.CODE:
                code_entries.append(entry)
            else:
                markdown += _render_entry(entry)

        if code_entries:
            markdown += "## Code Execution\n\n"
            markdown += 'Pass the source text as {"code": "..."}; files written to the working directory are returned with download links.\n\n'
            for entry in code_entries:
                markdown += _render_entry(entry)

        return markdown

    # --- Describe ---

    def _detail_for(self, target: ResolvedCapability) -> CapabilityDetail:
        if isinstance(target, ProcedureTarget):
            content = self.procedures.load_content(target.metadata.id)
            return ProcedureDetail(
                name=target.metadata.name,
                description=target.metadata.description,
                id=target.metadata.id,
                content=content.body,
                references=content.references,
                scripts=content.scripts,
                assets=content.assets,
            )
        if isinstance(target, ToolTarget):
            return ToolDetail(
                name=target.tool.name,
                description=target.tool.description,
                id=target.tool.id,
                input_schema=target.tool.input_schema,
                backend_id=target.tool.backend_id,
            )
        return CodeDetail(
            name=target.name,
            description=target.description,
            language=target.language,
        )

    def describe(self, names: Iterable[str]) -> list[CapabilityDetail]:
        """Describe each resolvable name; unknown names are omitted."""
        self._ensure_initialized()
        details = []
        for name in names:
            target = self.resolve(name)
            if target is None:
                logger.debug(f"No capability named '{name}', omitting from details")
                continue
            try:
                details.append(self._detail_for(target))
            except CapabilityError as e:
                logger.warning(f"Could not describe capability '{name}': {e}")
        return details

    # --- Execution ---

    def _invoke(self, name: str, target: ResolvedCapability, arguments: dict[str, Any]) -> ExecuteResult:
        if isinstance(target, ProcedureTarget):
            content = self.procedures.load_content(target.metadata.id)
            return ExecuteResult(
                name=name,
                success=True,
                result={
                    "id": target.metadata.id,
                    "name": target.metadata.name,
                    "description": target.metadata.description,
                    "header": content.header,
                    "content": content.body,
                    "references": content.references,
                    "scripts": content.scripts,
                    "assets": content.assets,
                },
            )

        if isinstance(target, ToolTarget):
            outcome = self.remote.call_tool(target.tool.id, arguments)
            return ExecuteResult(
                name=name,
                success=outcome.success,
                result=outcome.result,
                error=outcome.error,
                error_code=outcome.error_code,
            )

        code = arguments.get("code")
        if not isinstance(code, str) or not code.strip():
            raise ExecutionError(f"No code provided for {target.name}")
        run_result = self.runner.run(target.language, code)
        return ExecuteResult(name=name, success=True, result=run_result.model_dump(mode="json"))

    def _execute_single(self, item: ExecuteItem | dict[str, Any]) -> ExecuteResult:
        if not isinstance(item, ExecuteItem):
            try:
                item = ExecuteItem.model_validate(item)
            except ValidationError as e:
                name = item.get("name") if isinstance(item, dict) else None
                logger.warning(f"Rejected malformed batch item {item!r}: {e}")
                return ExecuteResult(
                    name=str(name or ""),
                    success=False,
                    error=f"Malformed capability request: {e}",
                    error_code="INVALID_REQUEST",
                )

        logger.info(f"Executing capability: {item.name}")
        try:
            target = self.resolve(item.name)
            if target is None:
                raise NotFoundError(f"Capability not found or not executable: {item.name}")
            if not is_kind_allowed(self.policy.policy_id, target.kind):
                raise CapabilityBlockedError(
                    f"Capability '{item.name}' ({target.kind.value}) is not allowed under policy "
                    f"'{self.policy.policy_id.value}'"
                )
            return self._invoke(item.name, target, item.input or {})
        except ExecutionError as e:
            logger.warning(f"Capability '{item.name}' failed: {e}")
            return ExecuteResult(
                name=item.name,
                success=False,
                result={"stderr": e.stderr, "exit_code": e.exit_code, "timed_out": e.timed_out},
                error=str(e),
                error_code=e.code,
            )
        except CapabilityError as e:
            logger.warning(f"Capability '{item.name}' failed: {e}")
            return ExecuteResult(name=item.name, success=False, error=str(e), error_code=e.code)
        except Exception as e:
            logger.error(f"Unexpected error executing capability '{item.name}': {e}", exc_info=True)
            return ExecuteResult(name=item.name, success=False, error=str(e), error_code="INTERNAL_ERROR")

    def execute_batch(self, items: Iterable[ExecuteItem | dict[str, Any]]) -> list[ExecuteResult]:
        """Execute a batch of capabilities with per-item failure isolation.

        Returns:
            One result per item, in input order
        """
        self._ensure_initialized()
        batch = list(items)
        logger.info(f"Executing batch of {len(batch)} capabilities ({self.policy.concurrency.value})")

        if self.policy.concurrency == ConcurrencyMode.SEQUENTIAL or len(batch) <= 1:
            return [self._execute_single(item) for item in batch]

        workers = min(self.policy.max_concurrent_tasks, len(batch))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="capability") as pool:
            return list(pool.map(self._execute_single, batch))

    # --- Stats ---

    def stats(self) -> RegistryStats:
        return RegistryStats(
            procedure_count=len(self.procedures.get_all_metadata()),
            tool_count=len(self.remote.get_all_tools()),
            backend_count=len(self.remote.get_all_configs()),
        )

    def close(self) -> None:
        """Release the HTTP client shared by remote calls and token requests."""
        self.remote.close()


# Global registry instance
_registry_instance: CapabilityRegistry | None = None
_registry_lock = threading.Lock()


def get_registry(domains_path: Path | str | None = None) -> CapabilityRegistry:
    """Get or create the global registry instance.

    Args:
        domains_path: Optional override of the configured domains root

    Returns:
        CapabilityRegistry instance (not yet initialized on first creation)
    """
    global _registry_instance
    with _registry_lock:
        if _registry_instance is None:
            settings = get_settings()
            if domains_path is not None:
                settings = settings.with_overrides(domains_path=Path(domains_path))
            _registry_instance = CapabilityRegistry.from_settings(settings)
        return _registry_instance


def reset_registry() -> None:
    """Drop the global registry so the next get_registry() builds a new one."""
    global _registry_instance
    with _registry_lock:
        _registry_instance = None
