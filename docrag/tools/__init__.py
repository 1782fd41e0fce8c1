"""Agent tools for driving a docrag server."""
from docrag.tools.rag import RagApiClient, register_rag_tools
from docrag.tools.registry import Tool, ToolRegistry, ToolResult


def build_registry(client: RagApiClient | None = None) -> ToolRegistry:
    """Create a registry holding every docrag tool."""
    registry = ToolRegistry()
    register_rag_tools(registry, client or RagApiClient())
    return registry


__all__ = ["build_registry", "RagApiClient", "Tool", "ToolResult", "ToolRegistry"]
