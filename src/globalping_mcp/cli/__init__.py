"""Globalping MCP CLI package."""

from .cli import app

__all__ = ["app"]
