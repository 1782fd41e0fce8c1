"""Registry for agent-callable tools.

Each tool declares pydantic input and output models and an async handler.
Agents call tools by name with a JSON-style argument dict; the registry
validates the arguments, applies a timeout and never raises.
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, ValidationError

logger = structlog.get_logger()

DEFAULT_TOOL_TIMEOUT = 120.0


@dataclass
class Tool:
    """Tool definition with input/output schemas and handler."""
    name: str
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    handler: Callable[[BaseModel], Awaitable[BaseModel]]


@dataclass
class ToolResult:
    """Outcome of a tool call; ``error`` is set when ``success`` is False."""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ToolRegistry:
    """Named collection of tools."""

    def __init__(self, timeout: float = DEFAULT_TOOL_TIMEOUT):
        self.tools: Dict[str, Tool] = {}
        # Indexing a directory can take minutes on CPU-only embedding
        self._timeout = timeout

    def register(self, tool: Tool) -> None:
        if tool.name in self.tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self.tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def list_tools(self) -> List[Tool]:
        return list(self.tools.values())

    def get_tools_description(self) -> str:
        """Describe every tool and its input schema for an agent prompt."""
        if not self.tools:
            return "No tools available."

        descriptions = []
        for tool in self.tools.values():
            input_schema = tool.input_model.model_json_schema()
            descriptions.append(
                f"Tool: {tool.name}\n"
                f"Description: {tool.description}\n"
                f"Input schema: {json.dumps(input_schema, indent=2)}\n"
            )

        return "\n".join(descriptions)

    async def execute_tool(self, tool_name: str, args: Dict[str, Any]) -> ToolResult:
        """Validate arguments and run a tool.

        Args:
            tool_name: Name of the tool to execute
            args: Arguments to pass to the tool

        Returns:
            ToolResult with the output model dumped to a dict, or an error
        """
        tool = self.get_tool(tool_name)

        if not tool:
            logger.error("tool_not_found", tool_name=tool_name)
            return ToolResult(success=False, error=f"Tool '{tool_name}' not found")

        try:
            validated_input = tool.input_model(**args)
        except ValidationError as e:
            logger.warning("tool_arguments_invalid", tool_name=tool_name, error=str(e))
            return ToolResult(success=False, error=f"Invalid arguments: {e}")

        try:
            async with asyncio.timeout(self._timeout):
                result = await tool.handler(validated_input)

            result_dict = result.model_dump()

            logger.info(
                "tool_executed",
                tool_name=tool_name,
                success=True,
                result_preview=str(result_dict)[:100],
            )

            return ToolResult(success=True, data=result_dict)

        except TimeoutError:
            logger.error("tool_timeout", tool_name=tool_name, timeout=self._timeout)
            return ToolResult(
                success=False,
                error=f"Tool execution timeout after {self._timeout}s",
            )

        except Exception as e:
            logger.exception("tool_execution_failed", tool_name=tool_name, error=str(e))
            return ToolResult(success=False, error=f"Tool execution failed: {e}")
