"""
Session orchestrator. Drives one conversation thread through the remote
assistant's run lifecycle.

One send:
  1. Acquire the thread (reuse the held id, else create one)
  2. Append the user message (always before the run exists)
  3. Create a run with the tool catalog and, at most, one kind of
     additional instructions: the page-context block, or the lighter
     source-URL hint telling the model to look the page up itself
  4. Poll: sleep, retrieve, repeat while queued / in_progress /
     requires_action, bounded by the poll budget
  5. On requires_action: run every pending tool call concurrently, submit
     all outputs in one call, keep polling. A failed submission ends the run.
  6. On completed: read the newest assistant message and clean it up

Run states:
    queued → in_progress → {requires_action ⇄ in_progress}
           → completed | failed | cancelled | expired

Terminal failures and timeouts come back as fixed reply text, never as
exceptions. Only configuration and transport problems raise.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass

from portalassist.context import ContextChannel
from portalassist.errors import RunInFlightError, TransportError
from portalassist.models import (
    CANCELLED,
    COMPLETED,
    EXPIRED,
    FAILED,
    IN_PROGRESS,
    TERMINAL_FAILURES,
    ChatReply,
    Run,
    ToolCall,
)
from portalassist.tools.registry import ToolRegistry
from portalassist.tools.results import format_result
from portalassist.transport import AssistantsClient
from portalassist.wiretap import WireLog

logger = logging.getLogger(__name__)

RUN_FAILED_REPLY = "The assistant run failed. Please try again."
RUN_CANCELLED_REPLY = "The assistant run was cancelled. Please try again."
RUN_EXPIRED_REPLY = "The assistant run expired before it could finish. Please try again."
TIMEOUT_REPLY = "The assistant is taking too long to respond. Please try again."
FETCH_FAILED_REPLY = "Failed to fetch response."
EMPTY_REPLY = "No valid response."
NO_RESPONSE_REPLY = "No response received."

TERMINAL_REPLIES = {
    FAILED: RUN_FAILED_REPLY,
    CANCELLED: RUN_CANCELLED_REPLY,
    EXPIRED: RUN_EXPIRED_REPLY,
}

# ---------------------------------------------------------------------------
# Reply cleanup
# ---------------------------------------------------------------------------

_CITATION = re.compile(r"【\d+:\d+†[^】]+】")
_REFERENCES = re.compile(r"\n\nReferences:[\s\S]*$")
_FENCED = re.compile(r"^```[a-z]*\n([\s\S]*?)\n```$")


def clean_reply(text: str) -> str:
    """
    Strip file-search citation markers like 【4:0†source】 and a trailing
    "References:" section, then unwrap a reply that is entirely one fenced
    block. Plain text comes back trimmed and otherwise unchanged.
    """
    while True:
        cleaned = _CITATION.sub("", text)
        cleaned = _REFERENCES.sub("", cleaned).strip()
        match = _FENCED.match(cleaned)
        if match:
            cleaned = match.group(1).strip()
        if cleaned == text:
            return cleaned
        text = cleaned


def extract_reply(messages: list[dict]) -> str | None:
    """Text of the newest assistant message (the list is newest-first)."""
    for msg in messages:
        if msg.get("role") != "assistant":
            continue
        for part in msg.get("content") or []:
            if part.get("type", "text") == "text":
                value = (part.get("text") or {}).get("value")
                if value:
                    return value
        return None
    return None


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PollPolicy:
    """How long to wait between status checks and how many to make."""
    interval: float = 1.0
    max_polls: int = 60

    @classmethod
    def legacy(cls) -> "PollPolicy":
        """The shorter budget the first client-side poller used."""
        return cls(interval=2.0, max_polls=10)

    @classmethod
    def from_settings(cls, settings) -> "PollPolicy":
        return cls(interval=settings.poll_interval, max_polls=settings.max_polls)


CONTEXT_INSTRUCTIONS = """## CURRENT USER CONTEXT

{description}

---

Use this context to provide relevant, specific assistance.
If a modal is open, focus on that item.
If user is editing, help with the editable fields.
If on a specific tab, focus on that tab's content.
If in a form, guide through remaining steps.

You can also use the get_page_context function to get detailed page information if needed."""

SOURCE_INSTRUCTIONS = """The user is currently viewing this page: {source_url}

If the user asks about the current page, what they can do, or needs help with a task, use the get_page_context function with this route to provide accurate, page-specific guidance."""


class InstructionBuilder:
    """
    Picks the additional instructions for a run.
    A full context description wins; a bare source URL is the fallback.
    """

    def __init__(
        self,
        context_template: str = CONTEXT_INSTRUCTIONS,
        source_template: str = SOURCE_INSTRUCTIONS,
    ):
        self.context_template = context_template
        self.source_template = source_template

    def build(self, context_description: str | None, source_url: str | None) -> str | None:
        if context_description:
            return self.context_template.format(description=context_description)
        if source_url:
            return self.source_template.format(source_url=source_url)
        return None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SessionOrchestrator:
    """Owns one conversation thread and at most one in-flight run."""

    def __init__(
        self,
        client: AssistantsClient,
        registry: ToolRegistry,
        assistant_id: str,
        policy: PollPolicy | None = None,
        instructions: InstructionBuilder | None = None,
        context: ContextChannel | None = None,
        wire: WireLog | None = None,
        thread_id: str | None = None,
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.registry = registry
        self.assistant_id = assistant_id
        self.policy = policy or PollPolicy()
        self.instructions = instructions or InstructionBuilder()
        self.context = context
        self.wire = wire
        self.thread_id = thread_id
        self._sleep = sleep
        self._active = False
        self._clears = 0

    @property
    def in_flight(self) -> bool:
        return self._active

    def clear(self) -> None:
        """
        Forget the held thread. A run still going remotely is not cancelled;
        whatever it produces is left for the caller to ignore.
        """
        logger.info("Thread %s cleared", self.thread_id)
        self.thread_id = None
        self._clears += 1

    def _log_wire(self, direction: str, role: str, content: str, run_id: str = "", tool_name: str = ""):
        if self.wire is None:
            return
        try:
            self.wire.log(
                direction=direction,
                role=role,
                content=content,
                thread_id=self.thread_id or "",
                run_id=run_id,
                tool_name=tool_name,
            )
        except OSError as e:
            logger.warning("Wire log write failed: %s", e)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(
        self,
        message: str,
        source_url: str | None = None,
        context_description: str | None = None,
    ) -> ChatReply:
        """
        Run one user turn to completion and return the reply.

        Raises RunInFlightError if a run is already active and
        TransportError when thread, message or run creation fails.
        """
        if self._active:
            raise RunInFlightError(self.thread_id)

        self._active = True
        clears = self._clears
        try:
            thread_id = await self._acquire_thread(clears)
            self._log_wire("inbound", "user", message)

            await self.client.append_message(thread_id, message)

            if not context_description and self.context is not None and self.context.has_context:
                context_description = self.context.build_description()
            additional = self.instructions.build(context_description, source_url)

            run = await self.client.create_run(
                thread_id,
                self.assistant_id,
                self.registry.list_declarations(),
                additional_instructions=additional,
            )
            logger.info("Run %s created on thread %s", run.id, thread_id)

            status, timed_out = await self._poll(thread_id, run.id)
            reply = await self._reply_for(thread_id, status, timed_out)
            self._log_wire("outbound", "assistant", reply, run_id=run.id)
            return ChatReply(reply=reply, thread_id=thread_id, run_status=status, run_id=run.id)
        finally:
            self._active = False

    async def _acquire_thread(self, clears: int) -> str:
        if self.thread_id:
            return self.thread_id
        thread_id = await self.client.create_thread()
        if clears != self._clears:
            # Cleared while the thread was being created: finish this send on
            # it, but never hand it to the next one.
            logger.info("Thread %s created for a cleared conversation, not kept", thread_id)
            return thread_id
        self.thread_id = thread_id
        logger.info("Thread created: %s", thread_id)
        return thread_id

    async def _poll(self, thread_id: str, run_id: str) -> tuple[str, bool]:
        """
        Drive the run until it leaves the pending states or the budget runs out.
        Returns (last status, timed_out).
        """
        status = IN_PROGRESS
        polls = 0

        while polls < self.policy.max_polls:
            await self._sleep(self.policy.interval)
            polls += 1

            try:
                run = await self.client.retrieve_run(thread_id, run_id)
            except TransportError as e:
                if not e.transient:
                    raise
                logger.warning("Status check %d failed, will retry: %s", polls, e)
                continue

            status = run.status
            logger.debug("Run %s status: %s (poll %d)", run_id, status, polls)

            if run.requires_action:
                if not await self._handle_action(thread_id, run):
                    return FAILED, False
                continue

            if status in TERMINAL_FAILURES:
                logger.error("Run %s ended %s: %s", run_id, status, run.last_error or "Unknown error")
                return status, False

            if not run.pending:
                return status, False

        logger.warning("Run %s still %s after %d polls", run_id, status, polls)
        return status, True

    async def _handle_action(self, thread_id: str, run: Run) -> bool:
        """Execute the paused run's tool calls and submit every output at once."""
        outputs = await self._execute_calls(run.tool_calls, run.id)
        try:
            await self.client.submit_tool_outputs(thread_id, run.id, outputs)
        except TransportError as e:
            logger.error("Tool output submission for run %s failed: %s", run.id, e)
            return False
        logger.info("Submitted %d tool output(s) for run %s", len(outputs), run.id)
        return True

    async def _execute_calls(self, calls: list[ToolCall], run_id: str = "") -> list[dict]:
        logger.info("Processing %d function call(s)", len(calls))

        async def one(call: ToolCall) -> dict:
            self._log_wire("internal", "tool", json.dumps(call.arguments), run_id, call.function_name)
            result = await self.registry.execute(call.function_name, call.arguments)
            output = format_result(result)
            self._log_wire("outbound", "tool", output, run_id, call.function_name)
            return {"tool_call_id": call.call_id, "output": output}

        return list(await asyncio.gather(*(one(c) for c in calls)))

    async def _reply_for(self, thread_id: str, status: str, timed_out: bool) -> str:
        if status == COMPLETED:
            try:
                messages = await self.client.list_messages(thread_id)
            except TransportError as e:
                logger.error("Failed to fetch messages: %s", e)
                return FETCH_FAILED_REPLY
            return clean_reply(extract_reply(messages) or EMPTY_REPLY)
        if timed_out:
            return TIMEOUT_REPLY
        if status in TERMINAL_FAILURES:
            return TERMINAL_REPLIES[status]
        return NO_RESPONSE_REPLY

    # ------------------------------------------------------------------
    # Companion operation: act on an already-created run
    # ------------------------------------------------------------------

    async def process_required_action(self, thread_id: str, run_id: str) -> dict:
        """
        One-shot tool pass for a run someone else created.
        Submission failures propagate as TransportError.
        """
        run = await self.client.retrieve_run(thread_id, run_id)
        if not run.requires_action:
            return {"status": "no_action_needed"}

        outputs = await self._execute_calls(run.tool_calls, run_id)
        await self.client.submit_tool_outputs(thread_id, run_id, outputs)
        return {"status": "tools_executed", "result": outputs}
