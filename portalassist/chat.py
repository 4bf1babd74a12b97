"""
Chat session: the client half of a conversation.

Pairs one SessionOrchestrator with the rendered message list and the local
store. Every send appends the user's message right away and always ends with
exactly one assistant entry: the reply, or "Error: <reason>" when the send
could not complete. Clearing wipes the list, the thread id and the stored
copies of both; a reply that arrives for a cleared conversation is dropped.
"""

from __future__ import annotations

import logging

from portalassist.context import ContextChannel
from portalassist.errors import PortalAssistError, RunInFlightError, TransportError
from portalassist.models import Message
from portalassist.orchestrator import SessionOrchestrator
from portalassist.store import LocalStore

logger = logging.getLogger(__name__)


class ChatSession:
    """Conversation state owned by one client."""

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        store: LocalStore | None = None,
        context: ContextChannel | None = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.context = context or orchestrator.context
        self.messages: list[Message] = []
        self.sending = False
        self._generation = 0

        if store is not None:
            self.messages = store.load_history()
            stored_thread = store.load_thread_id()
            if stored_thread and not orchestrator.thread_id:
                orchestrator.thread_id = stored_thread
            logger.info(
                "Chat session restored (%d messages, thread=%s)",
                len(self.messages),
                orchestrator.thread_id,
            )

    @property
    def thread_id(self) -> str | None:
        return self.orchestrator.thread_id

    def initial_message(self) -> str:
        if self.context is not None:
            return self.context.initial_message()
        return ""

    def _persist(self):
        if self.store is None:
            return
        self.store.save_history(self.messages)
        self.store.save_thread_id(self.thread_id)

    def _append(self, role: str, content: str) -> Message:
        msg = Message(role=role, content=content)
        self.messages.append(msg)
        return msg

    async def send(self, text: str, source_url: str | None = None) -> Message | None:
        """
        Send one message. Returns the assistant entry appended for it, or
        None when nothing was sent (blank input, or a send already running).
        """
        if self.sending or self.orchestrator.in_flight or not text.strip():
            return None

        self.sending = True
        generation = self._generation
        self._append("user", text)
        self._persist()

        try:
            result = await self.orchestrator.send(text, source_url=source_url)
            content = result.reply or "No response received"
        except RunInFlightError:
            # The user message is already shown; the guard keeps the run single.
            content = "Error: A response is still in progress."
        except TransportError as e:
            logger.error("Send failed: %s", e)
            content = f"Error: {e.stage}"
        except PortalAssistError as e:
            logger.error("Send failed: %s", e)
            content = f"Error: {e}"
        finally:
            self.sending = False

        if generation != self._generation:
            logger.info("Dropping reply for a cleared conversation")
            return None

        reply = self._append("assistant", content)
        self._persist()
        return reply

    def clear(self):
        """Forget everything locally. A remote run still going is left alone."""
        self._generation += 1
        self.messages = []
        self.orchestrator.clear()
        if self.store is not None:
            self.store.clear()

    def transcript(self) -> str:
        """Plain-text copy of the conversation."""
        lines = []
        for msg in self.messages:
            speaker = "You" if msg.role == "user" else "Assistant"
            lines.append(f"[{msg.timestamp}] {speaker}: {msg.content}")
        return "\n\n".join(lines)
