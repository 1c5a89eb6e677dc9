"""Remote tool directory: backend configs, tool discovery and JSON-RPC calls."""

from __future__ import annotations

import itertools
import json
import logging
import threading
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from capdomain.auth import CredentialManager
from capdomain.errors import AuthError, CapabilityError, ConfigError, NotFoundError, ProtocolError
from capdomain.scanner import scan_backend_configs
from capdomain.schemas import BackendConfig, ToolCallResult, ToolDescriptor

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
DEFAULT_REMOTE_TIMEOUT = 30.0  # seconds

RPC_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json, text/event-stream",
}


def make_tool_id(backend_id: str, tool_name: str) -> str:
    """Build the globally unique id of a remote tool."""
    return f"{backend_id}:{tool_name}"


def _decode_event_stream(text: str) -> dict[str, Any]:
    """Return the last JSON object carried by a `data:` line of an SSE body."""
    payload = None
    for line in text.splitlines():
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if not data:
            continue
        try:
            decoded = json.loads(data)
        except json.JSONDecodeError:
            continue
        if isinstance(decoded, dict):
            payload = decoded
    if payload is None:
        raise ValueError("event stream carried no JSON-RPC message")
    return payload


class RemoteToolDirectory:
    """Loads backend configs and discovers and invokes their tools."""

    def __init__(
        self,
        domains_path: Path | str,
        credentials: CredentialManager | None = None,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
    ):
        """Initialize the directory.

        Args:
            domains_path: Root holding the mcps/ config units
            credentials: Credential manager (one sharing this client is created when omitted)
            client: HTTP client for backend calls
            timeout: Timeout for backend calls in seconds
        """
        self.domains_path = Path(domains_path)
        self._client = client or httpx.Client(timeout=timeout)
        self.credentials = credentials or CredentialManager(client=self._client)
        self._configs: dict[str, BackendConfig] = {}
        self._tools: dict[str, ToolDescriptor] = {}
        self._lock = threading.Lock()
        self._request_ids = itertools.count(1)

    # --- Configs ---

    def _read_config(self, path: Path) -> BackendConfig:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ConfigError(f"Backend config is not a JSON object: {path}")
        if not raw.get("id") or not raw.get("endpoint"):
            raise ConfigError(f"Backend config missing id or endpoint: {path}")
        try:
            return BackendConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid backend config {path}: {e}") from e

    def load_configs(self) -> list[BackendConfig]:
        """Load every backend config unit, skipping malformed ones.

        Returns:
            The configs loaded by this call

        Raises:
            ConfigError: If the domains root is not a directory
        """
        logger.info("Loading backend configurations...")
        loaded = []

        for scanned in scan_backend_configs(self.domains_path):
            try:
                config = self._read_config(scanned.full_path)
            except ConfigError as e:
                logger.warning(str(e))
                continue
            except (OSError, ValueError) as e:
                logger.error(f"Error loading backend config {scanned.full_path}: {e}")
                continue

            with self._lock:
                if config.id in self._configs:
                    logger.warning(f"Duplicate backend id '{config.id}' in {scanned.relative_path}, replacing")
                self._configs[config.id] = config
            loaded.append(config)
            logger.info(f"Loaded backend config: {config.id}")

        logger.info(f"Loaded {len(self._configs)} backend configurations")
        return loaded

    # --- JSON-RPC ---

    def _rpc(self, config: BackendConfig, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one JSON-RPC request and return its result member.

        Raises:
            AuthError: If no credential is available for the backend
            ProtocolError: On transport failure, non-success status, or error field
        """
        headers = {**self.credentials.headers_for(config), **RPC_HEADERS}
        envelope: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": next(self._request_ids),
            "method": method,
        }
        if params is not None:
            envelope["params"] = params

        try:
            response = self._client.post(config.endpoint, json=envelope, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ProtocolError(f"{method} request to {config.id} failed: {e}", backend_id=config.id) from e

        if not response.is_success:
            raise ProtocolError(
                f"{method} failed: {response.status_code} {response.reason_phrase}",
                backend_id=config.id,
                status_code=response.status_code,
            )

        try:
            if response.headers.get("content-type", "").startswith("text/event-stream"):
                message = _decode_event_stream(response.text)
            else:
                message = response.json()
        except ValueError as e:
            raise ProtocolError(f"Malformed {method} response from {config.id}: {e}", backend_id=config.id) from e

        if not isinstance(message, dict):
            raise ProtocolError(f"Malformed {method} response from {config.id}", backend_id=config.id)

        error = message.get("error")
        if error:
            detail = error.get("message") if isinstance(error, dict) else str(error)
            raise ProtocolError(f"Backend error: {detail or 'Unknown backend error'}", backend_id=config.id)

        return message.get("result")

    # --- Discovery ---

    def _list_tools(self, config: BackendConfig) -> list[ToolDescriptor]:
        result = self._rpc(config, "tools/list")
        raw_tools = result.get("tools") if isinstance(result, dict) else None

        tools = []
        for raw in raw_tools or []:
            if not isinstance(raw, dict) or not raw.get("name"):
                logger.warning(f"Skipping unnamed tool from backend {config.id}")
                continue
            try:
                tools.append(
                    ToolDescriptor(
                        id=make_tool_id(config.id, raw["name"]),
                        name=raw["name"],
                        description=raw.get("description") or "",
                        input_schema=raw.get("inputSchema") or {},
                        backend_id=config.id,
                    )
                )
            except ValidationError as e:
                logger.warning(f"Skipping malformed tool '{raw['name']}' from backend {config.id}: {e}")
        return tools

    def _discover(self) -> dict[str, ToolDescriptor]:
        with self._lock:
            configs = list(self._configs.values())

        discovered: dict[str, ToolDescriptor] = {}
        for config in configs:
            try:
                tools = self._list_tools(config)
            except (ProtocolError, AuthError) as e:
                logger.error(f"Error discovering tools for backend {config.id}: {e}")
                continue

            for tool in tools:
                discovered[tool.id] = tool
            logger.info(f"Discovered {len(tools)} tools on backend {config.id}")

        logger.info(f"Discovered {len(discovered)} remote tools")
        return discovered

    def discover_tools(self) -> list[ToolDescriptor]:
        """Discover tools on every loaded backend.

        A backend whose discovery fails is logged and skipped. Tools are merged
        into the directory; identically keyed entries are overwritten.

        Returns:
            Tools discovered by this call, in backend order
        """
        logger.info("Discovering remote tools...")
        discovered = self._discover()
        with self._lock:
            self._tools.update(discovered)
        return list(discovered.values())

    def refresh_tools(self) -> list[ToolDescriptor]:
        """Replace every known tool with the result of a fresh discovery."""
        logger.info("Refreshing remote tools...")
        discovered = self._discover()
        with self._lock:
            self._tools = discovered
        return list(discovered.values())

    # --- Invocation ---

    def call_tool(self, tool_id: str, arguments: dict[str, Any] | None = None) -> ToolCallResult:
        """Invoke a tool through tools/call.

        Never raises for backend failures; the outcome is always a ToolCallResult.

        Args:
            tool_id: Qualified tool id (backend_id:tool_name)
            arguments: Tool arguments object

        Returns:
            ToolCallResult carrying the result or the error message and code
        """
        logger.info(f"Calling remote tool: {tool_id}")

        try:
            with self._lock:
                tool = self._tools.get(tool_id)
                if tool is None:
                    raise NotFoundError(f"Tool not found: {tool_id}")
                config = self._configs.get(tool.backend_id)
                if config is None:
                    raise NotFoundError(f"Backend config not found: {tool.backend_id}")

            result = self._rpc(
                config,
                "tools/call",
                {"name": tool.name, "arguments": arguments or {}},
            )
        except CapabilityError as e:
            logger.error(f"Error calling remote tool {tool_id}: {e}")
            return ToolCallResult(success=False, error=str(e), error_code=e.code)

        logger.info(f"Successfully called remote tool: {tool_id}")
        return ToolCallResult(success=True, result=result)

    # --- Accessors ---

    def get_all_tools(self) -> list[ToolDescriptor]:
        """Get every discovered tool, in discovery order."""
        with self._lock:
            return list(self._tools.values())

    def get_tools_by_backend(self, backend_id: str) -> list[ToolDescriptor]:
        """Get the tools discovered on one backend."""
        return [tool for tool in self.get_all_tools() if tool.backend_id == backend_id]

    def get_tool(self, tool_id: str) -> ToolDescriptor | None:
        with self._lock:
            return self._tools.get(tool_id)

    def find_tools_by_name(self, name: str) -> list[ToolDescriptor]:
        """Get every tool with the given bare name, in discovery order."""
        return [tool for tool in self.get_all_tools() if tool.name == name]

    def get_config(self, backend_id: str) -> BackendConfig | None:
        with self._lock:
            return self._configs.get(backend_id)

    def get_all_configs(self) -> list[BackendConfig]:
        with self._lock:
            return list(self._configs.values())

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()
