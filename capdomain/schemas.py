"""Pydantic schemas for capability records and the HTTP request/response contracts."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class CapabilityKind(str, Enum):
    """Closed set of capability implementations."""

    SKILL = "skill"
    TOOL = "tool"
    CODE = "code"


class AuthType(str, Enum):
    """Supported backend auth descriptors."""

    APP_TOKEN = "app-token"
    OAUTH2 = "oauth2"


class Language(str, Enum):
    """Interpreted languages accepted by the code runner."""

    PYTHON = "python"
    NODEJS = "nodejs"


class RegistryState(str, Enum):
    """Lifecycle of a capability registry instance."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


# --- Backend configuration units ---


class OAuth2Config(BaseModel):
    """OAuth2 client credentials plus an optional pre-seeded token pair."""

    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(default="", alias="clientId")
    client_secret: str = Field(default="", alias="clientSecret")
    token_url: str = Field(..., alias="tokenUrl")
    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_at: int | None = Field(
        default=None,
        alias="expiresAt",
        description="Expiry of the pre-seeded access token, epoch milliseconds",
    )


class AuthConfig(BaseModel):
    """Auth descriptor attached to a backend config unit."""

    model_config = ConfigDict(populate_by_name=True)

    type: AuthType
    app_token: str | None = Field(default=None, alias="appToken")
    oauth2: OAuth2Config | None = None


class BackendConfig(BaseModel):
    """One remote backend, loaded from a JSON config unit."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    endpoint: str = Field(..., min_length=1)
    auth: AuthConfig | None = None


class OAuth2TokenResponse(BaseModel):
    """Token endpoint reply for a refresh-token grant."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"


# --- Remote tools ---


class ToolDescriptor(BaseModel):
    """A tool discovered on a remote backend."""

    id: str = Field(..., description="backend_id:tool_name")
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)
    backend_id: str


class ToolCallResult(BaseModel):
    """Structured outcome of a tools/call invocation."""

    success: bool
    result: Any = None
    error: str | None = None
    error_code: str | None = None


# --- Local procedures ---


class ProcedureMetadata(BaseModel):
    """Header-only view of a local procedure document."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    path: str = Field(..., description="Directory relative to the domains root")


class ProcedureContent(BaseModel):
    """Full procedure content, loaded on demand."""

    metadata: ProcedureMetadata
    header: dict[str, Any] = Field(default_factory=dict)
    body: str = ""
    references: list[str] | None = None
    scripts: list[str] | None = None
    assets: list[str] | None = None


# --- Code execution ---


class GeneratedFile(BaseModel):
    """A file found in the code runner's scratch directory."""

    name: str
    path: str
    size: int
    created: str
    download_url: str


class CodeRunResult(BaseModel):
    """Result from the ephemeral code runner."""

    language: Language
    stdout: str
    stderr: str
    exit_code: int
    was_sandboxed: bool = False
    files: list[GeneratedFile] = Field(default_factory=list)
    execution_time: str | None = None


# --- Capability listing and details ---


class CapabilitySummary(BaseModel):
    """Name and description of one listed capability."""

    name: str
    description: str
    kind: CapabilityKind


class ProcedureDetail(BaseModel):
    """Describe output for a local procedure."""

    name: str
    description: str
    implementation: Literal["skill"] = "skill"
    id: str
    content: str
    references: list[str] | None = None
    scripts: list[str] | None = None
    assets: list[str] | None = None


class ToolDetail(BaseModel):
    """Describe output for a remote tool."""

    name: str
    description: str
    implementation: Literal["tool"] = "tool"
    id: str
    input_schema: dict[str, Any] = Field(default_factory=dict)
    backend_id: str


class CodeDetail(BaseModel):
    """Describe output for a code-execution pseudo-capability."""

    name: str
    description: str
    implementation: Literal["code"] = "code"
    language: Language


CapabilityDetail = Annotated[
    Union[ProcedureDetail, ToolDetail, CodeDetail],
    Field(discriminator="implementation"),
]


class RegistryStats(BaseModel):
    """Counts of loaded capability sources."""

    procedure_count: int = 0
    tool_count: int = 0
    backend_count: int = 0


# --- Request Schemas ---


class CapabilityDetailsRequest(BaseModel):
    """Request to describe capabilities by name."""

    capabilities: list[str]


class ExecuteItem(BaseModel):
    """One entry of an execution batch."""

    name: str = Field(..., min_length=1)
    input: dict[str, Any] | None = None


# --- Response Schemas ---


class ExecuteResult(BaseModel):
    """Outcome of one batch entry, correlated by position and name."""

    name: str
    success: bool
    result: Any = None
    error: str | None = None
    error_code: str | None = None


class CapabilityDetailsData(BaseModel):
    capabilities: list[CapabilityDetail] = Field(default_factory=list)


class CapabilityDetailsResponse(BaseModel):
    """Envelope for POST /capability."""

    success: bool = True
    data: CapabilityDetailsData


class ExecuteData(BaseModel):
    results: list[ExecuteResult] = Field(default_factory=list)


class ExecuteResponse(BaseModel):
    """Envelope for POST /execute."""

    success: bool = True
    data: ExecuteData


class RefreshResponse(BaseModel):
    """Outcome of a capability refresh."""

    success: bool
    message: str | None = None
    error: str | None = None


class FilesResponse(BaseModel):
    """Listing of the code runner's scratch directory."""

    success: bool = True
    files: list[GeneratedFile] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error response for failed requests."""

    success: bool = False
    error: str
    error_code: str | None = None


# --- Health Check ---


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok", "degraded"] = "ok"
    timestamp: str
    state: RegistryState
    stats: RegistryStats
    sandbox_available: bool = False
