"""Capability Domain.

Exposes one capability surface to an agent by aggregating locally documented
procedures (skills), tools on remote MCP backends, and sandboxed code execution.
"""

__version__ = "0.1.0"
