"""
Uniform result envelope for tool execution, and the serializer that turns it
into the literal tool output string the remote run expects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass
class ToolResult:
    """{success: true, data} or {success: false, error}."""
    success: bool
    data: Any = None
    error: str = ""

    @classmethod
    def ok(cls, data: Any) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


def format_result(result: ToolResult) -> str:
    """
    Serialize a result for submission as a tool output.
    Pretty-printed payload on success, {"error", "success": false} otherwise.
    """
    if result.success and result.data is not None:
        return json.dumps(result.data, indent=2, ensure_ascii=False)

    return json.dumps({
        "error": result.error or "Function call failed",
        "success": False,
    })
