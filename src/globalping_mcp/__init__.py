"""Globalping MCP - delegated OAuth gateway for the Globalping API."""

from importlib.metadata import version

from globalping_mcp.settings import Settings
from globalping_mcp.server.http import create_app

__version__ = version("globalping-mcp-auth")
__all__ = [
    "Settings",
    "create_app",
]
