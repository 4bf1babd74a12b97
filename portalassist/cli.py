#!/usr/bin/env python3
"""
PortalAssist CLI.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the HTTP service
    chat            talk            Interactive conversation in the terminal
    tools           catalog         Print the tool declarations
    tail            log, tap        Show (and follow) the wire log
    ping            status, health  Ping a running instance
"""

import argparse
import asyncio
import json

from portalassist import __version__


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the PortalAssist HTTP service."""
    import uvicorn
    from portalassist.config import get_settings

    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port

    print(f"  PortalAssist {__version__} on {host}:{port}")
    print(f"  Portal: {settings.portal_url}")
    print()

    uvicorn.run(
        "portalassist.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


async def _chat_loop(session, source: str | None):
    print(f"  {session.initial_message()}\n")
    while True:
        try:
            text = input("  you> ").strip()
        except EOFError:
            break
        if not text:
            continue
        if text in ("exit", "quit"):
            break
        if text == "/clear":
            session.clear()
            print("  (conversation cleared)\n")
            continue
        if text == "/copy":
            print(session.transcript() + "\n")
            continue

        reply = await session.send(text, source_url=source)
        if reply is not None:
            print(f"\n  assistant> {reply.content}\n")


def cmd_chat(args):
    """Talk to the assistant from the terminal, keeping history between runs."""
    from portalassist.chat import ChatSession
    from portalassist.config import get_settings
    from portalassist.context import ContextChannel
    from portalassist.errors import ConfigurationError
    from portalassist.orchestrator import PollPolicy, SessionOrchestrator
    from portalassist.store import LocalStore
    from portalassist.tools.registry import ToolRegistry
    from portalassist.transport import AssistantsClient
    from portalassist.wiretap import WireLog

    settings = get_settings()
    try:
        settings.require_openai()
    except ConfigurationError as e:
        print(f"  ✗ {e}")
        return

    context = ContextChannel.from_settings(settings)
    context.seed_from_source(args.source)

    policy = PollPolicy.legacy() if args.legacy_polling else PollPolicy.from_settings(settings)
    orchestrator = SessionOrchestrator(
        client=AssistantsClient.from_settings(settings),
        registry=ToolRegistry.from_settings(settings),
        assistant_id=settings.assistant_id,
        policy=policy,
        context=context,
        wire=WireLog(settings.wiretap_path),
    )
    session = ChatSession(orchestrator, store=LocalStore(args.db or settings.storage_path))

    print("  Type 'exit' to leave, '/clear' to start over, '/copy' for a transcript.\n")
    try:
        asyncio.run(_chat_loop(session, args.source))
    except KeyboardInterrupt:
        print()


def cmd_tools(args):
    """Print the declared tool catalog."""
    from portalassist.config import get_settings
    from portalassist.tools.registry import ToolRegistry

    registry = ToolRegistry.from_settings(get_settings())
    declarations = registry.list_declarations()
    if args.json:
        print(json.dumps(declarations, indent=2))
        return
    for tool in declarations:
        fn = tool["function"]
        params = ", ".join(fn["parameters"].get("properties", {}).keys())
        print(f"  ⚡ {fn['name']}({params})")
        print(f"     {fn['description'].splitlines()[0]}")


def cmd_tail(args):
    """Show the wire log."""
    from portalassist.config import get_settings
    from portalassist.wiretap import tail

    tail(
        log_path=args.log or get_settings().wiretap_path,
        follow=args.follow,
        last_n=args.last,
        role_filter=args.role,
        raw=args.raw,
    )


def cmd_ping(args):
    """Ping a running PortalAssist instance."""
    import httpx

    url = args.url or "http://localhost:8000"
    try:
        resp = httpx.get(f"{url}/api/health", timeout=5)
    except httpx.HTTPError as e:
        print(f"  ✗ {url} unreachable: {e}")
        return
    if resp.status_code != 200:
        print(f"  ✗ {url} answered HTTP {resp.status_code}")
        return
    data = resp.json()
    print(f"  ✓ {url} is UP (v{data.get('version', '?')})")
    print(f"    configured: {data.get('configured')}")
    print(f"    live sessions: {data.get('sessions', 0)}")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def main():
    parser = argparse.ArgumentParser(
        prog="portalassist",
        description="PortalAssist: portal assistant service and tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"portalassist {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"], "Start the HTTP service", cmd_serve, setup_serve)

    def setup_chat(p):
        p.add_argument("--source", "-s", default=None, help="Page route to seed the context with")
        p.add_argument("--db", default=None, help="Local store path (default: from config)")
        p.add_argument("--legacy-polling", action="store_true",
                       help="Poll every 2s, 10 times, instead of the configured budget")

    _add_command(sub, ["chat", "talk"], "Interactive conversation", cmd_chat, setup_chat)

    def setup_tools(p):
        p.add_argument("--json", action="store_true", help="Print raw declarations")

    _add_command(sub, ["tools", "catalog"], "Print tool declarations", cmd_tools, setup_tools)

    def setup_tail(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries")
        p.add_argument("--role", "-r", choices=["user", "assistant", "tool"], default=None)
        p.add_argument("--follow", "-f", action="store_true", help="Keep watching for new entries")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output")

    _add_command(sub, ["tail", "log", "tap"], "Show the wire log", cmd_tail, setup_tail)

    def setup_ping(p):
        p.add_argument("--url", "-u", default=None, help="Service URL (default: http://localhost:8000)")

    _add_command(sub, ["ping", "status", "health"], "Ping a running instance", cmd_ping, setup_ping)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
