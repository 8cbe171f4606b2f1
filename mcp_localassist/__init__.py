"""MCP adapter for the LocalAssist broker."""
