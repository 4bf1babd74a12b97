"""
Email tool. Lets the assistant send a plain-text email through SendGrid.

Disabled by default. Enable in config.yaml:
    tools:
      send_email:
        enabled: true
        api_key: ${SENDGRID_API_KEY}
        sender: ${SENDGRID_SENDER}
"""

import logging

import httpx

from portalassist.tools.registry import FunctionDeclaration
from portalassist.tools.results import ToolResult

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class SendEmailTool:
    """Sends a single plain-text message via the SendGrid v3 API."""

    declaration = FunctionDeclaration(
        name="send_email",
        description=(
            "Send a plain-text email on the user's behalf. Only use this when the "
            "user explicitly asks for something to be emailed and has given the "
            "recipient address."
        ),
        parameters={
            "type": "object",
            "properties": {
                "to": {"type": "string", "description": "Recipient email address"},
                "subject": {"type": "string", "description": "Subject line"},
                "text": {"type": "string", "description": "Plain-text body"},
            },
            "required": ["to", "subject", "text"],
        },
    )

    def __init__(self, api_key: str, sender: str, timeout: float = 10, url: str = SENDGRID_URL):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.url = url
        logger.info("SendEmailTool initialized (sender=%s)", sender)

    async def run(self, args: dict) -> ToolResult:
        to = str(args.get("to", "")).strip()
        if "@" not in to:
            return ToolResult.fail(f"Invalid recipient address: {to!r}")

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.sender},
            "subject": str(args.get("subject", "")),
            "content": [{"type": "text/plain", "value": str(args.get("text", ""))}],
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )

        if resp.status_code >= 400:
            logger.error("SendGrid error: HTTP %d %s", resp.status_code, resp.text[:200])
            return ToolResult.fail(f"Failed to send email: HTTP {resp.status_code}")

        message_id = resp.headers.get("x-message-id")
        logger.info("Email sent to %s (id=%s)", to, message_id)
        return ToolResult.ok({"status": "sent", "message_id": message_id})
