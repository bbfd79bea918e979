"""Tool schema bridge and tool runner."""

from model_relay.tools.bridge import ToolCallAccumulator
from model_relay.tools.runner import ToolExecutor, ToolRunner
from model_relay.tools.schema import ParameterSchema, SchemaType, ToolDefinition, build_tool_set

__all__ = [
    "ParameterSchema",
    "SchemaType",
    "ToolCallAccumulator",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRunner",
    "build_tool_set",
]
