"""Foreman MCP: delegate tickets, issues and pull requests to coding agents."""

__version__ = "0.1.0"

__all__ = ["__version__"]
