"""ZenTao MCP Server - exposes ZenTao bug queries as Model Context Protocol tools."""

__version__ = "0.3.0"
