"""
Tests for the local conversation store.
Uses a temp database for each test.
"""

import pytest

from portalassist.models import Message
from portalassist.store import HISTORY_KEY, THREAD_KEY, LocalStore


@pytest.fixture
def store(tmp_path):
    """Create a fresh store for each test."""
    return LocalStore(str(tmp_path / "nested" / "test.db"))


def test_empty_store(store):
    assert store.load_thread_id() is None
    assert store.load_history() == []


def test_thread_id_round_trip(store):
    store.save_thread_id("thread_1")
    assert store.load_thread_id() == "thread_1"

    store.save_thread_id("thread_2")
    assert store.load_thread_id() == "thread_2"

    store.save_thread_id(None)
    assert store.load_thread_id() is None


def test_history_preserves_order(store):
    messages = [
        Message(role="user", content="hi"),
        Message(role="assistant", content="Hello! ¿Cómo puedo ayudar?"),
    ]
    store.save_history(messages)

    loaded = store.load_history()
    assert [m.role for m in loaded] == ["user", "assistant"]
    assert loaded[1].content == "Hello! ¿Cómo puedo ayudar?"
    assert loaded[0].timestamp == messages[0].timestamp


def test_corrupt_history_starts_fresh(store):
    store.set(HISTORY_KEY, "{not json")
    assert store.load_history() == []


def test_clear_removes_both_keys(store):
    store.save_thread_id("thread_1")
    store.save_history([Message(role="user", content="x")])

    store.clear()

    assert store.get(THREAD_KEY) is None
    assert store.get(HISTORY_KEY) is None


def test_persists_across_instances(tmp_path):
    path = str(tmp_path / "state.db")
    LocalStore(path).save_thread_id("thread_7")
    assert LocalStore(path).load_thread_id() == "thread_7"
