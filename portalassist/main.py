"""
FastAPI application, the PortalAssist entry point.

Endpoints:
  POST /api/chat                    one user turn → cleaned assistant reply
  POST /api/assistant/tool-handler  run pending tool calls of an existing run
  POST /api/context                 CONTEXT_UPDATE relayed from the host page
  GET  /api/context                 current snapshot, summary and description
  GET  /api/welcome                 initial message (origin advisory wins)
  GET  /api/tools                   declared tool catalog
  GET  /api/health                  health check
"""

import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from portalassist import __version__
from portalassist.config import Settings, get_config
from portalassist.context import ContextChannel
from portalassist.errors import ConfigurationError, RunInFlightError, TransportError
from portalassist.orchestrator import PollPolicy, SessionOrchestrator
from portalassist.tools.registry import ToolRegistry
from portalassist.transport import AssistantsClient
from portalassist.wiretap import WireLog


# ---------------------------------------------------------------------------
# Globals, initialized at startup
# ---------------------------------------------------------------------------
settings: Settings | None = None
tool_registry: ToolRegistry | None = None
contexts: "ContextPool | None" = None
sessions: "SessionPool | None" = None
wire: WireLog | None = None

logger = logging.getLogger(__name__)


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


class ContextPool:
    """
    One ContextChannel per client. The embed page names itself with a client
    id (X-Client-Id header, or clientId in the body / query string); a
    snapshot pushed by one client is never seen by another. Requests without
    a client id get a throwaway channel.
    """

    def __init__(self, settings: Settings, max_clients: int = 1000):
        self.settings = settings
        self.max_clients = max_clients
        self._by_client: OrderedDict[str, ContextChannel] = OrderedDict()

    def get(self, client_id: str | None) -> ContextChannel:
        if not client_id:
            return ContextChannel.from_settings(self.settings)
        channel = self._by_client.get(client_id)
        if channel is None:
            channel = ContextChannel.from_settings(self.settings)
            self._by_client[client_id] = channel
            while len(self._by_client) > self.max_clients:
                self._by_client.popitem(last=False)
        else:
            self._by_client.move_to_end(client_id)
        return channel

    def peek(self, client_id: str | None) -> ContextChannel | None:
        """The client's channel if it has one; never creates."""
        if not client_id:
            return None
        return self._by_client.get(client_id)

    def __len__(self) -> int:
        return len(self._by_client)


class SessionPool:
    """
    One orchestrator per live thread, so the single-flight guard holds for
    every request that names the same thread. Oldest idle entries are
    dropped past max_sessions.
    """

    def __init__(self, settings: Settings, registry: ToolRegistry,
                 wire: WireLog | None = None, max_sessions: int = 500):
        self.settings = settings
        self.registry = registry
        self.wire = wire
        self.max_sessions = max_sessions
        self._by_thread: OrderedDict[str, SessionOrchestrator] = OrderedDict()

    def _new(self, thread_id: str | None = None) -> SessionOrchestrator:
        return SessionOrchestrator(
            client=AssistantsClient.from_settings(self.settings),
            registry=self.registry,
            assistant_id=self.settings.assistant_id,
            policy=PollPolicy.from_settings(self.settings),
            wire=self.wire,
            thread_id=thread_id,
        )

    def peek(self, thread_id: str | None) -> SessionOrchestrator | None:
        if not thread_id:
            return None
        return self._by_thread.get(thread_id)

    def get(self, thread_id: str | None) -> SessionOrchestrator:
        if not thread_id:
            return self._new()
        orch = self._by_thread.get(thread_id)
        if orch is None:
            orch = self._new(thread_id)
            self.remember(orch)
        else:
            self._by_thread.move_to_end(thread_id)
        return orch

    def remember(self, orch: SessionOrchestrator):
        if not orch.thread_id:
            return
        self._by_thread[orch.thread_id] = orch
        self._by_thread.move_to_end(orch.thread_id)
        while len(self._by_thread) > self.max_sessions:
            oldest_id, oldest = next(iter(self._by_thread.items()))
            if oldest.in_flight:
                break
            del self._by_thread[oldest_id]

    def __len__(self) -> int:
        return len(self._by_thread)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global settings, tool_registry, contexts, sessions, wire

    cfg = get_config()
    _setup_logging(cfg)

    settings = Settings.from_config(cfg)
    tool_registry = ToolRegistry.from_settings(settings)
    contexts = ContextPool(settings)
    wire = WireLog(settings.wiretap_path)
    sessions = SessionPool(settings, tool_registry, wire=wire)

    missing = settings.missing_openai()
    if missing:
        logger.warning("OpenAI configuration incomplete (%s); /api/chat will return 500", ", ".join(missing))

    logger.info("PortalAssist %s started, portal %s", __version__, settings.portal_url)
    logger.info("Tools: %s", tool_registry.list_tools())
    logger.info("Allowed origins: %s", settings.allowed_origins)
    logger.info("Polling: every %.1fs, up to %d times", settings.poll_interval, settings.max_polls)

    yield

    wire.close()
    logger.info("PortalAssist shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="PortalAssist",
    description="Portal assistant backed by a hosted thread/run assistant.",
    version=__version__,
    lifespan=lifespan,
)


async def _json_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _client_id(request: Request, body: dict | None = None) -> str | None:
    """Which embed instance is asking: header first, then body, then query."""
    return (
        request.headers.get("x-client-id")
        or (body or {}).get("clientId")
        or request.query_params.get("clientId")
        or None
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@app.post("/api/chat")
async def chat(request: Request):
    """
    Body: {message, threadId?, sourceUrl?, contextDescription?, clientId?}
    Returns {reply, threadId, status: "success"} or {error} with a non-2xx status.

    Without contextDescription, the snapshot pushed by the same client (if any)
    is used. Snapshots of other clients are never consulted.
    """
    try:
        settings.require_openai()
    except ConfigurationError as e:
        logger.error("%s", e)
        return JSONResponse({"error": "Missing OpenAI configuration"}, status_code=500)

    body = await _json_body(request)
    if body is None:
        return JSONResponse({"error": "invalid JSON"}, status_code=400)

    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        return JSONResponse({"error": "Message is required"}, status_code=400)

    thread_id = body.get("threadId") or None
    source_url = body.get("sourceUrl") or None
    context_description = body.get("contextDescription") or None
    if not context_description:
        channel = contexts.peek(_client_id(request, body))
        if channel is not None and channel.has_context:
            context_description = channel.build_description()

    logger.info(
        "Chat request: len=%d thread=%s source=%s context=%s",
        len(message), thread_id or "new", source_url or "none", bool(context_description),
    )

    orch = sessions.get(thread_id)
    try:
        result = await orch.send(
            message,
            source_url=source_url,
            context_description=context_description,
        )
    except RunInFlightError:
        return JSONResponse(
            {"error": "A response is already in progress for this conversation"},
            status_code=409,
        )
    except TransportError as e:
        return JSONResponse({"error": e.stage}, status_code=500)
    except Exception as e:
        logger.exception("Chat request failed: %s", e)
        return JSONResponse({"error": "Unable to reach assistant."}, status_code=500)
    finally:
        sessions.remember(orch)

    return JSONResponse(result.to_response())


@app.post("/api/assistant/tool-handler")
async def tool_handler(request: Request):
    """Body: {thread_id, run_id}. Executes pending tool calls once, if any."""
    body = await _json_body(request) or {}
    thread_id = body.get("thread_id")
    run_id = body.get("run_id")
    if not thread_id or not run_id:
        return JSONResponse({"error": "Missing thread_id or run_id"}, status_code=400)

    active = sessions.peek(thread_id)
    if active is not None and active.in_flight:
        # The in-loop poller owns this run's tool calls.
        return JSONResponse(
            {"error": "A response is already in progress for this conversation"},
            status_code=409,
        )

    try:
        settings.require_openai()
        result = await sessions.get(thread_id).process_required_action(thread_id, run_id)
    except (ConfigurationError, TransportError) as e:
        logger.error("Tool handler error: %s", e)
        return JSONResponse({"error": "Internal error", "details": str(e)}, status_code=500)

    return JSONResponse(result)


# ---------------------------------------------------------------------------
# Page context
# ---------------------------------------------------------------------------

def _context_state(channel: ContextChannel) -> dict:
    return {
        "has_context": channel.has_context,
        "route": channel.route,
        "summary": channel.summary(),
        "description": channel.build_description(),
        "origin_error": channel.origin_error,
    }


@app.post("/api/context")
async def push_context(request: Request):
    """
    The embed page relays the host's postMessage here, naming itself with a
    client id. The browser's Origin header (or an explicit "origin" field) is
    checked against the allow-list.
    """
    body = await _json_body(request)
    if body is None:
        return JSONResponse({"error": "invalid JSON"}, status_code=400)

    client_id = _client_id(request, body)
    if not client_id:
        return JSONResponse({"error": "clientId is required"}, status_code=400)

    channel = contexts.get(client_id)
    origin = request.headers.get("origin") or body.get("origin") or ""
    if body.get("embedded") is not None:
        channel.embedded = bool(body["embedded"])

    envelope = body.get("message", body)
    if not channel.receive(origin, envelope):
        return JSONResponse(
            {"accepted": False, "error": channel.origin_error},
            status_code=403,
        )
    return JSONResponse({
        "accepted": True,
        "route": channel.route,
        "summary": channel.summary(),
    })


@app.get("/api/context")
async def get_context(request: Request):
    channel = contexts.peek(_client_id(request)) or ContextChannel.from_settings(settings)
    return JSONResponse(_context_state(channel))


@app.get("/api/welcome")
async def welcome(request: Request, source: str | None = None, embedded: bool | None = None):
    """Initial message for a freshly opened widget."""
    channel = contexts.get(_client_id(request))
    if embedded is not None:
        channel.embedded = embedded
    if source and not channel.has_context:
        channel.seed_from_source(source)
    return JSONResponse({
        "message": channel.initial_message(),
        "advisory": channel.error_message() is not None,
        "summary": channel.summary(),
    })


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------

@app.get("/api/tools")
async def list_tools():
    return JSONResponse({"tools": tool_registry.list_declarations()})


@app.get("/api/health")
async def health():
    return JSONResponse({
        "status": "ok",
        "version": __version__,
        "configured": not settings.missing_openai(),
        "sessions": len(sessions),
        "clients": len(contexts),
    })
