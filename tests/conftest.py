"""
Shared fakes: a scripted assistants client and a registry with stand-in tools.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from portalassist.models import Run, ToolCall
from portalassist.tools.registry import FunctionDeclaration, ToolRegistry
from portalassist.tools.results import ToolResult
from portalassist.transport import AssistantsClient


def make_run(status: str, run_id: str = "run_1", tool_calls=None) -> Run:
    return Run(id=run_id, thread_id="thread_1", status=status, tool_calls=tool_calls or [])


def assistant_messages(text: str) -> list[dict]:
    return [
        {"role": "assistant", "content": [{"type": "text", "text": {"value": text}}]},
        {"role": "user", "content": [{"type": "text", "text": {"value": "earlier"}}]},
    ]


class FakePageTool:
    """Answers get_page_context with a canned document."""

    declaration = FunctionDeclaration(
        name="get_page_context",
        description="Look up a page",
        parameters={
            "type": "object",
            "properties": {"route": {"type": "string"}},
            "required": ["route"],
        },
    )

    def __init__(self, data=None):
        self.data = data if data is not None else {"title": "Feedback"}
        self.calls = []

    async def run(self, args):
        self.calls.append(args)
        return ToolResult.ok(self.data)


@pytest.fixture
def fake_client():
    """
    Factory for a client whose retrieve_run walks through the given statuses.
    Extra items in statuses may be Run objects or exceptions.
    """
    def _make(statuses=("completed",), reply="Hello there"):
        client = MagicMock(spec=AssistantsClient)
        client.create_thread = AsyncMock(return_value="thread_1")
        client.append_message = AsyncMock(return_value={})
        client.create_run = AsyncMock(return_value=make_run("queued"))
        client.retrieve_run = AsyncMock(side_effect=[
            s if not isinstance(s, str) else make_run(s) for s in statuses
        ])
        client.submit_tool_outputs = AsyncMock(return_value=make_run("queued"))
        client.list_messages = AsyncMock(return_value=assistant_messages(reply))
        return client
    return _make


@pytest.fixture
def page_tool():
    return FakePageTool()


@pytest.fixture
def registry(page_tool):
    reg = ToolRegistry(tools_cfg={"page_context": {"enabled": False}})
    reg.register(page_tool)
    return reg


@pytest.fixture
def no_sleep():
    return AsyncMock()


def tool_call(call_id="call_1", name="get_page_context", **args) -> ToolCall:
    return ToolCall(call_id=call_id, function_name=name, arguments=args)
