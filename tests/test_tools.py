"""
Tests for the tool registry, result formatting, and the built-in tools.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from portalassist.tools import FunctionDeclaration, ToolRegistry, ToolResult, format_result
from portalassist.tools.email import SendEmailTool
from portalassist.tools.page_context import PageContextTool, normalize_route


def _mock_httpx(mock_client_cls, **methods):
    mock_client = AsyncMock()
    for name, value in methods.items():
        setattr(mock_client, name, value)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


class ExplodingTool:
    declaration = FunctionDeclaration(name="explode", description="Always raises")

    async def run(self, args):
        raise RuntimeError("kaboom")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestToolRegistry:
    def test_page_context_enabled_by_default(self):
        registry = ToolRegistry()
        assert registry.list_tools() == ["get_page_context"]
        assert isinstance(registry.get("get_page_context"), PageContextTool)

    def test_page_context_can_be_disabled(self):
        registry = ToolRegistry(tools_cfg={"page_context": {"enabled": False}})
        assert registry.list_tools() == []

    def test_email_needs_credentials(self):
        registry = ToolRegistry(tools_cfg={"send_email": {"enabled": True}})
        assert "send_email" not in registry.list_tools()

        registry = ToolRegistry(tools_cfg={
            "send_email": {"enabled": True, "api_key": "SG.x", "sender": "help@gea.gov.gd"},
        })
        assert "send_email" in registry.list_tools()

    def test_portal_url_flows_to_tool(self):
        registry = ToolRegistry(portal_url="https://portal.example")
        assert registry.get("get_page_context").portal_url == "https://portal.example"

    def test_declarations_shape(self):
        registry = ToolRegistry()
        [tool] = registry.list_declarations()
        assert tool["type"] == "function"
        assert tool["function"]["name"] == "get_page_context"
        assert tool["function"]["parameters"]["required"] == ["route"]
        assert registry.get_declaration("get_page_context").required == ["route"]
        assert registry.get_declaration("nope") is None

    @pytest.mark.asyncio
    async def test_unknown_function(self):
        result = await ToolRegistry().execute("launch_rockets", {})
        assert not result.success
        assert result.error == "Unknown function: launch_rockets"

    @pytest.mark.asyncio
    async def test_missing_required_argument(self):
        result = await ToolRegistry().execute("get_page_context", {})
        assert not result.success
        assert "route" in result.error

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_failure(self):
        registry = ToolRegistry(tools_cfg={"page_context": {"enabled": False}})
        registry.register(ExplodingTool())

        result = await registry.execute("explode", None)

        assert not result.success
        assert result.error == "kaboom"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def test_format_success():
    out = format_result(ToolResult.ok({"title": "Feedback", "steps": ["Pick a service"]}))
    assert out == json.dumps({"title": "Feedback", "steps": ["Pick a service"]}, indent=2)


def test_format_failure():
    out = format_result(ToolResult.fail("Route parameter is required"))
    assert json.loads(out) == {"error": "Route parameter is required", "success": False}


def test_format_failure_default_message():
    assert json.loads(format_result(ToolResult(success=False))) == {
        "error": "Function call failed",
        "success": False,
    }


def test_result_to_dict():
    assert ToolResult.ok([1]).to_dict() == {"success": True, "data": [1]}
    assert ToolResult.fail("no").to_dict() == {"success": False, "error": "no"}


# ---------------------------------------------------------------------------
# Page context tool
# ---------------------------------------------------------------------------

def test_normalize_route():
    assert normalize_route("feedback") == "/feedback"
    assert normalize_route(" /admin/analytics ") == "/admin/analytics"


@pytest.mark.asyncio
async def test_page_context_success():
    tool = PageContextTool(portal_url="https://gea.gov.gd/")
    doc = {"title": "Service Feedback", "audience": "public", "steps": ["a", "b"], "tips": []}

    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = doc

    with patch("portalassist.tools.page_context.httpx.AsyncClient") as mock_cls:
        mock = _mock_httpx(mock_cls, get=AsyncMock(return_value=resp))
        result = await tool.run({"route": "feedback"})

    assert result.success
    assert result.data == doc
    assert mock.get.call_args[0][0] == "https://gea.gov.gd/api/content/page-context"
    assert mock.get.call_args.kwargs["params"] == {"route": "/feedback"}


@pytest.mark.asyncio
async def test_page_context_empty_route():
    tool = PageContextTool(portal_url="https://gea.gov.gd")
    with patch("portalassist.tools.page_context.httpx.AsyncClient") as mock_cls:
        result = await tool.run({"route": "  "})
        mock_cls.assert_not_called()

    assert not result.success
    assert result.error == "Route parameter is required"


@pytest.mark.asyncio
async def test_page_context_http_error():
    tool = PageContextTool(portal_url="https://gea.gov.gd")
    resp = MagicMock()
    resp.status_code = 404

    with patch("portalassist.tools.page_context.httpx.AsyncClient") as mock_cls:
        _mock_httpx(mock_cls, get=AsyncMock(return_value=resp))
        result = await tool.run({"route": "/missing"})

    assert not result.success
    assert result.error == "Failed to fetch page context: HTTP 404"


@pytest.mark.asyncio
async def test_page_context_network_error():
    tool = PageContextTool(portal_url="https://gea.gov.gd")

    with patch("portalassist.tools.page_context.httpx.AsyncClient") as mock_cls:
        _mock_httpx(mock_cls, get=AsyncMock(side_effect=httpx.ConnectError("refused")))
        result = await tool.run({"route": "/feedback"})

    assert not result.success
    assert result.error == "refused"


# ---------------------------------------------------------------------------
# Email tool
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_send_email_payload():
    tool = SendEmailTool(api_key="SG.key", sender="help@gea.gov.gd")
    resp = MagicMock()
    resp.status_code = 202
    resp.headers = {"x-message-id": "abc123"}

    with patch("portalassist.tools.email.httpx.AsyncClient") as mock_cls:
        mock = _mock_httpx(mock_cls, post=AsyncMock(return_value=resp))
        result = await tool.run({"to": "citizen@example.com", "subject": "Ticket", "text": "Your ticket is open."})

    assert result.success
    assert result.data == {"status": "sent", "message_id": "abc123"}
    payload = mock.post.call_args.kwargs["json"]
    assert payload["personalizations"] == [{"to": [{"email": "citizen@example.com"}]}]
    assert payload["from"] == {"email": "help@gea.gov.gd"}
    assert mock.post.call_args.kwargs["headers"]["Authorization"] == "Bearer SG.key"


@pytest.mark.asyncio
async def test_send_email_rejects_bad_address():
    tool = SendEmailTool(api_key="SG.key", sender="help@gea.gov.gd")
    result = await tool.run({"to": "nobody", "subject": "s", "text": "t"})
    assert not result.success
    assert "Invalid recipient" in result.error


@pytest.mark.asyncio
async def test_send_email_api_error():
    tool = SendEmailTool(api_key="SG.key", sender="help@gea.gov.gd")
    resp = MagicMock()
    resp.status_code = 403
    resp.text = "forbidden"

    with patch("portalassist.tools.email.httpx.AsyncClient") as mock_cls:
        _mock_httpx(mock_cls, post=AsyncMock(return_value=resp))
        result = await tool.run({"to": "a@b.c", "subject": "s", "text": "t"})

    assert not result.success
    assert result.error == "Failed to send email: HTTP 403"
