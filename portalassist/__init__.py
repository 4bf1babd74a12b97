"""
PortalAssist: conversational assistant for an embedding web portal.
Forwards user messages to a hosted thread/run assistant, runs its tool calls
locally, and feeds it the page context pushed by the host frame.
"""

__version__ = "1.0.0"
