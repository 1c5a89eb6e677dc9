"""MCP server exposing the capability broker to an agent."""

import os

import httpx
from mcp.server.fastmcp import FastMCP

mcp = FastMCP("capdomain")
BROKER = os.environ.get("CAPDOMAIN_BROKER_URL", "http://localhost:5271")


def _client(timeout: float = 60.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BROKER, timeout=timeout)


@mcp.tool()
async def list_capabilities() -> str:
    """List every available capability (skills, remote tools, code execution) as markdown."""
    async with _client(timeout=30.0) as client:
        r = await client.get("/metadata")
        r.raise_for_status()
        return r.text


@mcp.tool()
async def describe_capabilities(names: list[str]) -> dict:
    """Get full details for capabilities by name: skill content, tool input schema, or code language.

    Unknown names are left out of the result.
    """
    async with _client(timeout=30.0) as client:
        r = await client.post("/capability", json={"capabilities": names})
        return r.json()


@mcp.tool()
async def execute_capabilities(items: list[dict]) -> dict:
    """Execute capabilities in order. Each item is {"name": ..., "input": {...}}.

    Results come back in the same order, one per item, each with a success flag.
    """
    async with _client() as client:
        r = await client.post("/execute", json=items)
        return r.json()


if __name__ == "__main__":
    mcp.run()
