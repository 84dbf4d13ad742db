"""TuningSearch MCP server.

Exposes TuningSearch web search, news search and page crawling as MCP tools,
with retries, response caching, performance monitoring and health checks.
"""

__version__ = "1.0.0"
