"""Agent framework integrations.

Available integrations:
- tabletalk.integrations.mcp - MCP (Model Context Protocol) server
"""
