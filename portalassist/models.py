"""
Data models for the conversation and the remote run it drives.
These define the shape of data flowing between the orchestrator,
the transport and the chat session.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# Run statuses reported by the remote service
QUEUED = "queued"
IN_PROGRESS = "in_progress"
REQUIRES_ACTION = "requires_action"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"
EXPIRED = "expired"

PENDING_STATUSES = frozenset({QUEUED, IN_PROGRESS, REQUIRES_ACTION})
TERMINAL_FAILURES = frozenset({FAILED, CANCELLED, EXPIRED})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Message:
    """A single rendered message in the conversation."""
    role: str = ""           # "user" or "assistant"
    content: str = ""
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            role=data.get("role", ""),
            content=data.get("content", ""),
            timestamp=data.get("timestamp") or _now(),
        )


@dataclass
class ToolCall:
    """A function call issued by the remote model inside a paused run."""
    call_id: str
    function_name: str
    arguments: dict = field(default_factory=dict)
    raw_arguments: str = ""

    @classmethod
    def from_api(cls, data: dict) -> "ToolCall":
        fn = data.get("function", {}) or {}
        raw = fn.get("arguments") or "{}"
        try:
            args = json.loads(raw) if isinstance(raw, str) else dict(raw)
        except json.JSONDecodeError:
            logger.warning("Tool call %s has unparseable arguments: %r", data.get("id"), raw)
            args = {}
        if not isinstance(args, dict):
            args = {}
        return cls(
            call_id=data.get("id", ""),
            function_name=fn.get("name", ""),
            arguments=args,
            raw_arguments=raw if isinstance(raw, str) else json.dumps(raw),
        )


@dataclass
class Run:
    """Local mirror of the remote run's state."""
    id: str
    thread_id: str = ""
    status: str = QUEUED
    tool_calls: list[ToolCall] = field(default_factory=list)
    last_error: dict | None = None

    @property
    def pending(self) -> bool:
        return self.status in PENDING_STATUSES

    @property
    def requires_action(self) -> bool:
        return self.status == REQUIRES_ACTION

    @classmethod
    def from_api(cls, data: dict) -> "Run":
        required = data.get("required_action") or {}
        calls = (required.get("submit_tool_outputs") or {}).get("tool_calls") or []
        return cls(
            id=data.get("id", ""),
            thread_id=data.get("thread_id", ""),
            status=data.get("status", ""),
            tool_calls=[ToolCall.from_api(c) for c in calls],
            last_error=data.get("last_error"),
        )


@dataclass
class ChatReply:
    """What one send produces: the reply text and the thread it belongs to."""
    reply: str
    thread_id: str
    run_status: str = ""
    run_id: str = ""

    @property
    def completed(self) -> bool:
        return self.run_status == COMPLETED

    def to_response(self) -> dict:
        return {"reply": self.reply, "threadId": self.thread_id, "status": "success"}
