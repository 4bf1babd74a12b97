"""
Page context tool. Asks the portal's content API what a page is for.

The model calls this when the user wants to know what they can do on a page,
how to finish a form, or where they are. The portal answers with a document
like {title, audience, steps[], tips[], ...} which is handed back verbatim.

Example call from the model:
  get_page_context({"route": "/feedback"})
"""

import logging

import httpx

from portalassist.tools.registry import FunctionDeclaration
from portalassist.tools.results import ToolResult

logger = logging.getLogger(__name__)

DESCRIPTION = """Get detailed information about a specific page in the GEA Portal.

Use this function when:
- User asks what they can do on the current page
- User needs help with a form or process on the page
- User asks how to complete a task
- User seems confused about where they are or what to do
- You need to provide step-by-step guidance for the current page
- User asks about features available on the page

The function returns:
- Page title and purpose
- Target audience (public, staff, admin)
- Step-by-step instructions (if applicable)
- Helpful tips and warnings
- Available features

Always use this function to provide accurate, page-specific guidance rather than generic responses."""


def normalize_route(route: str) -> str:
    """Routes always start with a slash."""
    route = route.strip()
    return route if route.startswith("/") else f"/{route}"


class PageContextTool:
    """Fetches page-context documents from the portal content API."""

    declaration = FunctionDeclaration(
        name="get_page_context",
        description=DESCRIPTION,
        parameters={
            "type": "object",
            "properties": {
                "route": {
                    "type": "string",
                    "description": (
                        'The page route/path from the GEA Portal, e.g., "/feedback", '
                        '"/admin/analytics", "/grievance", "/ticket-status"'
                    ),
                },
            },
            "required": ["route"],
        },
    )

    def __init__(self, portal_url: str, timeout: float = 10):
        self.portal_url = portal_url.rstrip("/")
        self.timeout = timeout
        logger.info("PageContextTool initialized (%s)", self.portal_url)

    async def run(self, args: dict) -> ToolResult:
        route = args.get("route") or ""
        if not isinstance(route, str) or not route.strip():
            logger.error("get_page_context called without a route")
            return ToolResult.fail("Route parameter is required")

        route = normalize_route(route)
        url = f"{self.portal_url}/api/content/page-context"
        logger.debug("Fetching page context for %s", route)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    url,
                    params={"route": route},
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error("Page context fetch failed for %s: %s", route, e)
            return ToolResult.fail(str(e) or "Failed to fetch page context")

        if resp.status_code >= 400:
            logger.error("Page context API error for %s: HTTP %d", route, resp.status_code)
            return ToolResult.fail(f"Failed to fetch page context: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            return ToolResult.fail("Page context API returned invalid JSON")

        if isinstance(data, dict):
            logger.info(
                "Page context for %s: %s (audience=%s, steps=%d, tips=%d)",
                route,
                data.get("title"),
                data.get("audience"),
                len(data.get("steps") or []),
                len(data.get("tips") or []),
            )
        return ToolResult.ok(data)
