"""
Tool registry: the catalog the remote model may call, and the dispatcher
that runs a call on its behalf.

Reads the tools: block of config.yaml to decide which tools are enabled.
New tools are added here + in config.yaml. Nothing else changes.

Each tool object carries a FunctionDeclaration and an async run(args) that
returns a ToolResult. The registry never raises from execute(): unknown
names, missing arguments and handler exceptions all come back as failure
results, which become model-visible data.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from portalassist.tools.results import ToolResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionDeclaration:
    """Static catalog entry: name, purpose and JSON-schema parameters."""
    name: str
    description: str
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}})

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))

    def to_tool(self) -> dict:
        """OpenAI tools format for run creation."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Manages available tools based on configuration."""

    def __init__(self, tools_cfg: dict | None = None, portal_url: str = "https://gea.abhirup.app"):
        from portalassist.tools.email import SendEmailTool
        from portalassist.tools.page_context import PageContextTool

        self.tools: dict[str, object] = {}
        tools_cfg = tools_cfg or {}

        # --- Page context (the model's way to look up what a page does) ---
        pc_cfg = tools_cfg.get("page_context", {})
        if pc_cfg.get("enabled", True):  # Enabled by default
            self.register(PageContextTool(
                portal_url=pc_cfg.get("url") or portal_url,
                timeout=pc_cfg.get("timeout", 10),
            ))

        # --- Email (needs a SendGrid key and a verified sender) ---
        em_cfg = tools_cfg.get("send_email", {})
        if em_cfg.get("enabled", False):
            if em_cfg.get("api_key") and em_cfg.get("sender"):
                self.register(SendEmailTool(
                    api_key=em_cfg["api_key"],
                    sender=em_cfg["sender"],
                    timeout=em_cfg.get("timeout", 10),
                ))
            else:
                logger.warning("send_email enabled but api_key/sender missing, not registered")

        logger.info("Tool registry loaded: %s", self.list_tools())

    @classmethod
    def from_settings(cls, settings) -> "ToolRegistry":
        return cls(tools_cfg=settings.tools, portal_url=settings.portal_url)

    def register(self, tool) -> None:
        """Add (or replace) a tool under its declared name."""
        self.tools[tool.declaration.name] = tool

    def get(self, name: str):
        """Get a tool by name, or None if not registered."""
        return self.tools.get(name)

    def list_tools(self) -> list[str]:
        """Return names of all registered tools."""
        return list(self.tools.keys())

    def get_declaration(self, name: str) -> FunctionDeclaration | None:
        tool = self.tools.get(name)
        return tool.declaration if tool is not None else None

    def list_declarations(self) -> list[dict]:
        """The immutable catalog, in the shape run creation expects."""
        return [tool.declaration.to_tool() for tool in self.tools.values()]

    async def execute(self, name: str, args: dict | None) -> ToolResult:
        """
        Run a tool by name. Always returns a ToolResult.
        """
        tool = self.tools.get(name)
        if tool is None:
            logger.error("Unknown function: %s", name)
            return ToolResult.fail(f"Unknown function: {name}")

        args = args if isinstance(args, dict) else {}
        missing = [p for p in tool.declaration.required if p not in args]
        if missing:
            logger.warning("Tool '%s' called without %s", name, missing)
            return ToolResult.fail(f"Missing required argument: {', '.join(missing)}")

        start = time.monotonic()
        try:
            result = await tool.run(args)
        except Exception as e:
            logger.error("Tool '%s' raised: %s", name, e)
            result = ToolResult.fail(str(e) or f"{name} failed")
        elapsed_ms = (time.monotonic() - start) * 1000

        logger.info(
            "Tool '%s' %s in %.0fms",
            name,
            "succeeded" if result.success else f"failed ({result.error})",
            elapsed_ms,
        )
        return result
