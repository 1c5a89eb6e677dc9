"""Capability backends: local procedures, remote tools and code execution."""

from capdomain.backends.code_runner import CodeRunner
from capdomain.backends.procedures import ProcedureCatalog
from capdomain.backends.remote_tools import RemoteToolDirectory

__all__ = ["CodeRunner", "ProcedureCatalog", "RemoteToolDirectory"]
