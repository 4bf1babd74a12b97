"""
Local functions the remote assistant may call.
"""
from portalassist.tools.results import ToolResult, format_result
from portalassist.tools.registry import FunctionDeclaration, ToolRegistry

__all__ = [
    "ToolResult",
    "format_result",
    "FunctionDeclaration",
    "ToolRegistry",
]
