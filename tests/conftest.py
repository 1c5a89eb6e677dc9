"""Pytest configuration and fixtures for capability tests."""

import json
from pathlib import Path

import httpx
import pytest


CODE_REVIEWER_DOC = """---
name: code-reviewer
description: Reviews code
version: 2
---

# Code Reviewer

Read the diff, then list problems by severity.
"""


def write_procedure(root: Path, folder: str, text: str) -> Path:
    """Write a SKILL.md document under root/skills/<folder>/."""
    procedure_dir = root / "skills" / folder
    procedure_dir.mkdir(parents=True, exist_ok=True)
    doc = procedure_dir / "SKILL.md"
    doc.write_text(text)
    return doc


def write_backend_config(root: Path, filename: str, config: dict) -> Path:
    """Write a backend config unit under root/mcps/."""
    mcps_dir = root / "mcps"
    mcps_dir.mkdir(parents=True, exist_ok=True)
    path = mcps_dir / filename
    path.write_text(json.dumps(config))
    return path


class FakeBackends:
    """In-process stand-in for remote JSON-RPC backends and a token endpoint.

    Backends are keyed by host; requests to TOKEN_HOST are treated as
    refresh-token grants.
    """

    TOKEN_HOST = "auth.test"

    def __init__(self):
        self.tools: dict[str, list[dict]] = {}
        self.call_results: dict[tuple[str, str], dict] = {}
        self.failing: dict[str, httpx.Response] = {}
        self.requests: list[httpx.Request] = []
        self.token_responses: list[httpx.Response] = []
        self.token_requests: list[dict] = []

    def add_backend(self, host: str, tools: list[dict]) -> None:
        self.tools[host] = tools

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        body = json.loads(request.content or b"{}")

        if host == self.TOKEN_HOST:
            self.token_requests.append(body)
            if self.token_responses:
                return self.token_responses.pop(0)
            return httpx.Response(200, json={"access_token": "fresh-token", "expires_in": 600})

        if host in self.failing:
            return self.failing[host]

        if body.get("method") == "tools/list":
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "result": {"tools": self.tools.get(host, [])}},
            )

        if body.get("method") == "tools/call":
            name = body["params"]["name"]
            payload = self.call_results.get(
                (host, name),
                {"result": {"content": [{"type": "text", "text": f"{host}:{name}"}]}},
            )
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **payload})

        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))

    def rpc_requests(self, method: str) -> list[dict]:
        bodies = [json.loads(r.content) for r in self.requests if r.url.host != self.TOKEN_HOST]
        return [b for b in bodies if b.get("method") == method]


@pytest.fixture
def fake_backends() -> FakeBackends:
    """Fake remote backends reachable through httpx.MockTransport."""
    return FakeBackends()


@pytest.fixture
def domains_dir(tmp_path: Path) -> Path:
    """Create a domains directory with one valid and one broken procedure."""
    root = tmp_path / "domains"
    root.mkdir()

    doc = write_procedure(root, "code-reviewer", CODE_REVIEWER_DOC)
    references = doc.parent / "references"
    references.mkdir()
    (references / "checklist.md").write_text("- naming\n- tests\n")
    (references / "diagram.png").write_bytes(b"\x89PNG")
    scripts = doc.parent / "scripts"
    scripts.mkdir()
    (scripts / "lint.sh").write_text("#!/bin/sh\necho lint\n")

    write_procedure(root, "broken", "---\nname: broken\n---\nNo description here.\n")

    return root


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    """Scratch directory for the code runner."""
    return tmp_path / "scratch"
