"""
Assistants API client: the six remote operations the orchestrator needs.

Pure protocol plumbing:
  - create_thread         POST /threads
  - append_message        POST /threads/{thread}/messages
  - create_run            POST /threads/{thread}/runs
  - retrieve_run          GET  /threads/{thread}/runs/{run}
  - submit_tool_outputs   POST /threads/{thread}/runs/{run}/submit_tool_outputs
  - list_messages         GET  /threads/{thread}/messages

Every failure, network or non-2xx, is raised as TransportError carrying the
stage label the HTTP layer shows to the user. Nothing here retries; the
orchestrator decides what is transient.
"""

from __future__ import annotations

import logging
import time

import httpx

from portalassist.errors import TransportError
from portalassist.models import Run

logger = logging.getLogger(__name__)

STAGE_CREATE_THREAD = "Failed to create thread"
STAGE_APPEND_MESSAGE = "Failed to add message to thread"
STAGE_CREATE_RUN = "Failed to create run"
STAGE_RETRIEVE_RUN = "Failed to check run status"
STAGE_SUBMIT_OUTPUTS = "Failed to submit tool outputs"
STAGE_LIST_MESSAGES = "Failed to fetch messages"


class AssistantsClient:
    """Thin async client for the hosted thread/run conversation API."""

    def __init__(
        self,
        api_key: str,
        organization: str = "",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.organization = organization
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "AssistantsClient":
        return cls(
            api_key=settings.api_key,
            organization=settings.organization,
            base_url=settings.api_base_url,
            timeout=settings.api_timeout,
        )

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": "assistants=v2",
        }
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        return headers

    @staticmethod
    def _error_message(resp) -> str:
        """Pull error.message out of an API error body, else a text excerpt."""
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:200]
        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
        return resp.text[:200]

    async def _request(self, method: str, path: str, stage: str, body: dict | None = None) -> dict:
        url = f"{self.base_url}{path}"
        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if method == "GET":
                    resp = await client.get(url, headers=self.headers)
                else:
                    resp = await client.post(url, json=body or {}, headers=self.headers)
        except httpx.TimeoutException:
            logger.warning("%s: timed out after %ss (%s %s)", stage, self.timeout, method, path)
            raise TransportError(stage, None, f"Timeout after {self.timeout}s")
        except httpx.HTTPError as e:
            logger.warning("%s: %s (%s %s)", stage, e, method, path)
            raise TransportError(stage, None, str(e))

        latency = (time.monotonic() - t0) * 1000
        if resp.status_code >= 400:
            message = self._error_message(resp)
            logger.error(
                "%s: HTTP %d after %.0fms: %s", stage, resp.status_code, latency, message
            )
            raise TransportError(stage, resp.status_code, message)

        logger.debug("%s %s -> %d (%.0fms)", method, path, resp.status_code, latency)
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("%s: HTTP %d with an unreadable body", stage, resp.status_code)
            raise TransportError(stage, resp.status_code, "invalid response body")
        return data

    @staticmethod
    def _require_id(data: dict, stage: str) -> str:
        value = data.get("id")
        if not value or not isinstance(value, str):
            raise TransportError(stage, None, "invalid response body: missing id")
        return value

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_thread(self) -> str:
        data = await self._request("POST", "/threads", STAGE_CREATE_THREAD, {})
        return self._require_id(data, STAGE_CREATE_THREAD)

    async def append_message(self, thread_id: str, content: str) -> dict:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            STAGE_APPEND_MESSAGE,
            {"role": "user", "content": content},
        )

    async def create_run(
        self,
        thread_id: str,
        assistant_id: str,
        tools: list[dict],
        additional_instructions: str | None = None,
    ) -> Run:
        body: dict = {"assistant_id": assistant_id, "tools": tools}
        if additional_instructions:
            body["additional_instructions"] = additional_instructions
        data = await self._request("POST", f"/threads/{thread_id}/runs", STAGE_CREATE_RUN, body)
        self._require_id(data, STAGE_CREATE_RUN)
        run = Run.from_api(data)
        run.thread_id = run.thread_id or thread_id
        return run

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        data = await self._request(
            "GET", f"/threads/{thread_id}/runs/{run_id}", STAGE_RETRIEVE_RUN
        )
        run = Run.from_api(data)
        run.thread_id = run.thread_id or thread_id
        return run

    async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: list[dict]) -> Run:
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            STAGE_SUBMIT_OUTPUTS,
            {"tool_outputs": outputs},
        )
        return Run.from_api(data)

    async def list_messages(self, thread_id: str) -> list[dict]:
        """Thread messages, newest first (the API's default ordering)."""
        data = await self._request("GET", f"/threads/{thread_id}/messages", STAGE_LIST_MESSAGES)
        return data.get("data", [])

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} url={self.base_url!r}>"
