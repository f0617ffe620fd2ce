from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping

from dispatch import constants as c
from dispatch import handlers
from dispatch.context import DispatchContext
from dispatch.errors import UnknownActionError
from dispatch.events import QueueEvent, parse_event
from dispatch.feedback import handle_status


logger = logging.getLogger(__name__)

Handler = Callable[[DispatchContext, Any], Awaitable[None]]


class EventRouter:
    """Decode raw queue payloads and hand them to the handler for their action."""

    def __init__(self, ctx: DispatchContext) -> None:
        self.ctx = ctx
        self.handlers: dict[str, Handler] = {
            c.ACTION_ACTIVATE: handlers.handle_activate,
            c.ACTION_INBOUND_TEXT: handlers.handle_inbound_text,
            c.ACTION_INBOUND_STATUS: handle_status,
            c.ACTION_ANNOUNCE: handlers.handle_announce,
            c.ACTION_PAGE: handlers.handle_page,
            c.ACTION_LOGIN: handlers.handle_login,
            c.ACTION_AUTH_CODE: handlers.handle_login,
            c.ACTION_TRANSCRIPTION: handlers.handle_transcription,
            c.ACTION_PHONE_ISSUE: handlers.handle_phone_issue,
            c.ACTION_ALERT: handlers.handle_alert,
        }

    async def handle(self, event: QueueEvent) -> None:
        handler = self.handlers.get(event.action)
        if handler is None:
            raise UnknownActionError(event.action)
        logger.debug("handling %s (retry %d)", event.action, event.retry_count)
        await handler(self.ctx, event)

    async def route(self, raw: Mapping[str, Any]) -> QueueEvent:
        """Parse and handle one payload; returns the decoded event."""
        event = parse_event(raw)
        await self.handle(event)
        return event
