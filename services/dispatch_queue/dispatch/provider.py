"""Twilio-backed SMS/MMS delivery.

The Twilio client is synchronous, so each send runs in a worker thread.
Clients are cached per sub-account.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, Sequence

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from dispatch.errors import ProviderError
from dispatch.formatting import to_e164
from dispatch.identities import SendingIdentity


logger = logging.getLogger(__name__)


class Provider(Protocol):
    async def send(
        self,
        identity: SendingIdentity,
        to: str,
        body: str,
        media_urls: Sequence[str] = (),
        status_callback: Optional[str] = None,
    ) -> str: ...


class TwilioProvider:
    def __init__(self) -> None:
        self._clients: dict[str, Client] = {}

    def _client(self, identity: SendingIdentity) -> Client:
        assert identity.account_sid and identity.auth_token
        client = self._clients.get(identity.account_sid)
        if client is None:
            client = Client(identity.account_sid, identity.auth_token)
            self._clients[identity.account_sid] = client
        return client

    async def send(
        self,
        identity: SendingIdentity,
        to: str,
        body: str,
        media_urls: Sequence[str] = (),
        status_callback: Optional[str] = None,
    ) -> str:
        """Send one message and return the provider's message SID."""
        kwargs = {"body": body, "from_": identity.number, "to": to_e164(to)}
        if media_urls:
            kwargs["media_url"] = list(media_urls)
        if status_callback:
            kwargs["status_callback"] = status_callback
        client = self._client(identity)
        try:
            message = await asyncio.to_thread(client.messages.create, **kwargs)
        except TwilioRestException as e:
            raise ProviderError(f"Twilio error {e.code} - {e.msg}", code=e.code) from e
        return message.sid
