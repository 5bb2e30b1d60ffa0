"""MCP tools exposed by the load monitor server."""
