"""
Tests for ChatSession: rendered history, persistence, clearing, and
the error entries shown when a send cannot complete.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from portalassist.chat import ChatSession
from portalassist.context import ContextChannel
from portalassist.errors import TransportError
from portalassist.orchestrator import SessionOrchestrator
from portalassist.store import LocalStore
from portalassist.transport import STAGE_CREATE_THREAD, AssistantsClient


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "chat.db"))


def _session(client, registry, sleep, store=None, context=None):
    orch = SessionOrchestrator(
        client=client,
        registry=registry,
        assistant_id="asst_1",
        context=context,
        sleep=sleep,
    )
    return ChatSession(orch, store=store)


@pytest.mark.asyncio
async def test_send_appends_both_entries(fake_client, registry, no_sleep, store):
    session = _session(fake_client(), registry, no_sleep, store=store)

    reply = await session.send("hello")

    assert reply.role == "assistant"
    assert reply.content == "Hello there"
    assert [(m.role, m.content) for m in session.messages] == [
        ("user", "hello"),
        ("assistant", "Hello there"),
    ]
    assert store.load_thread_id() == "thread_1"
    assert len(store.load_history()) == 2
    assert not session.sending


@pytest.mark.asyncio
async def test_restores_from_store(fake_client, registry, no_sleep, store):
    first = _session(fake_client(), registry, no_sleep, store=store)
    await first.send("hello")

    client = fake_client()
    second = _session(client, registry, no_sleep, store=store)

    assert second.thread_id == "thread_1"
    assert len(second.messages) == 2

    await second.send("again")
    client.create_thread.assert_not_awaited()


@pytest.mark.asyncio
async def test_blank_message_not_sent(fake_client, registry, no_sleep):
    client = fake_client()
    session = _session(client, registry, no_sleep)

    assert await session.send("   ") is None
    assert session.messages == []
    client.append_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_transport_failure_shows_error_entry(fake_client, registry, no_sleep, store):
    client = fake_client()
    client.create_thread.side_effect = TransportError(STAGE_CREATE_THREAD, 500)
    session = _session(client, registry, no_sleep, store=store)

    reply = await session.send("hello")

    assert reply.content == "Error: Failed to create thread"
    assert [m.role for m in session.messages] == ["user", "assistant"]
    assert store.load_thread_id() is None


@pytest.mark.asyncio
async def test_clear_wipes_everything(fake_client, registry, no_sleep, store):
    session = _session(fake_client(), registry, no_sleep, store=store)
    await session.send("hello")

    session.clear()

    assert session.messages == []
    assert session.thread_id is None
    assert store.load_thread_id() is None
    assert store.load_history() == []


@pytest.mark.asyncio
async def test_reply_after_clear_is_dropped(fake_client, registry, store):
    gate = asyncio.Event()

    async def held_sleep(_):
        await gate.wait()

    session = _session(fake_client(), registry, held_sleep, store=store)

    pending = asyncio.create_task(session.send("hello"))
    for _ in range(5):
        await asyncio.sleep(0)
    assert session.sending

    # A second send while the first is running is refused outright.
    assert await session.send("again") is None

    session.clear()
    gate.set()

    assert await pending is None
    assert session.messages == []
    assert store.load_history() == []


def test_initial_message_from_context(fake_client, registry, no_sleep):
    context = ContextChannel(allowed_origins=["https://gea.gov.gd"], welcome_message="Welcome!")
    session = _session(fake_client(), registry, no_sleep, context=context)
    assert session.initial_message() == "Welcome!"

    context.embedded = True
    context.receive("https://evil.example", {})
    assert session.initial_message().startswith("It seems that I am unable to view the page")


@pytest.mark.asyncio
async def test_transcript(fake_client, registry, no_sleep):
    session = _session(fake_client(), registry, no_sleep)
    await session.send("hello")

    text = session.transcript()
    assert "You: hello" in text
    assert "Assistant: Hello there" in text


@pytest.mark.asyncio
async def test_unreadable_thread_body_shows_stage_error(registry, no_sleep):
    resp = MagicMock(status_code=200, text="<html>maintenance</html>")
    resp.json.side_effect = ValueError("not json")
    http = AsyncMock()
    http.post = AsyncMock(return_value=resp)
    http.__aenter__ = AsyncMock(return_value=http)
    http.__aexit__ = AsyncMock(return_value=False)

    session = _session(AssistantsClient(api_key="sk-test"), registry, no_sleep)
    with patch("portalassist.transport.httpx.AsyncClient", return_value=http):
        reply = await session.send("hello")

    assert reply.content == "Error: Failed to create thread"
    assert [m.role for m in session.messages] == ["user", "assistant"]
    assert session.thread_id is None
