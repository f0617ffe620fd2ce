"""Sending identities resolved from the provider secret.

A sending identity is a named outbound channel (a department's page number,
its group-chat number, the global alert number). The secret blob is flat:

- ``accountSid<Account>`` / ``authToken<Account>``: sub-account credentials
- ``phoneNumber<Account><type>``: the outbound number for a category
- ``apiCode``: shared code embedded in status callback URLs

Categories whose number is absent from the secret are dropped, so a missing
number surfaces as an unresolvable identity rather than an empty ``From``.

The catalog is loaded once per process behind a :class:`SingleFlight` so that
concurrent cold-start events share one secret fetch.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, Literal, Mapping, Optional, TypeVar

import boto3

from dispatch.errors import ConfigurationError
from dispatch.formatting import parse_phone


logger = logging.getLogger(__name__)

IdentityType = Literal["page", "chat", "alert"]

DEFAULT_PAGE_IDENTITY = "page"
ALERT_IDENTITY = "alert"


@dataclass(frozen=True)
class IdentityCategory:
    name: str
    number_key: str
    type: IdentityType
    account: Optional[str] = None
    department: Optional[str] = None


BASE_CATEGORIES: tuple[IdentityCategory, ...] = (
    IdentityCategory("pageBaca", "phoneNumberBacapage", "page", "Baca", "Baca"),
    IdentityCategory("page", "phoneNumberCrestonepage", "page", "Crestone", "Crestone"),
    IdentityCategory(ALERT_IDENTITY, "phoneNumberalert", "alert"),
    IdentityCategory("chatCrestone", "phoneNumberCrestonechat", "chat", "Crestone", "Crestone"),
    IdentityCategory("chatNSCAD", "phoneNumberNSCADchat", "chat", "NSCAD", "NSCAD"),
    IdentityCategory("pageNSCAD", "phoneNumberNSCADpage", "page", "NSCAD", "NSCAD"),
    IdentityCategory("pageSaguache", "phoneNumberSaguachepage", "page", "Saguache", "Saguache"),
)


@dataclass(frozen=True)
class SendingIdentity:
    """A resolved outbound number plus the credentials it is billed to."""
    name: str
    number: str
    type: IdentityType
    account_sid: Optional[str]
    auth_token: Optional[str]
    account: Optional[str] = None
    department: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.account_sid and self.auth_token)


class IdentityCatalog:
    """Read-only lookup of sending identities by name and by phone number."""

    def __init__(self, identities: Iterable[SendingIdentity], api_code: str = "") -> None:
        self._by_name: dict[str, SendingIdentity] = {i.name: i for i in identities}
        self._by_number: dict[str, SendingIdentity] = {
            parse_phone(i.number): i for i in self._by_name.values()
        }
        self.api_code = api_code

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    @property
    def names(self) -> list[str]:
        return sorted(self._by_name)

    def get(self, name: str | None) -> Optional[SendingIdentity]:
        if name is None:
            return None
        return self._by_name.get(name)

    def require(self, name: str) -> SendingIdentity:
        identity = self._by_name.get(name)
        if identity is None:
            raise ConfigurationError(f"Invalid phone number category - {name}")
        return identity

    def for_number(self, number: str) -> Optional[SendingIdentity]:
        return self._by_number.get(parse_phone(number))


def build_catalog(
    secret: Mapping[str, str],
    categories: Iterable[IdentityCategory] = BASE_CATEGORIES,
) -> IdentityCatalog:
    """Resolve categories against a flat provider secret.

    >>> cat = build_catalog({"phoneNumberalert": "+15550000000", "accountSid": "AC1", "authToken": "t"})
    >>> cat.names
    ['alert']
    """
    identities: list[SendingIdentity] = []
    for category in categories:
        number = secret.get(category.number_key)
        if not number:
            logger.info("identity %s has no number configured; skipping", category.name)
            continue
        account = category.account or ""
        identities.append(
            SendingIdentity(
                name=category.name,
                number=number,
                type=category.type,
                account_sid=secret.get(f"accountSid{account}"),
                auth_token=secret.get(f"authToken{account}"),
                account=category.account,
                department=category.department,
            )
        )
    return IdentityCatalog(identities, api_code=str(secret.get("apiCode", "")))


T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Memoize one async computation; concurrent first callers share it.

    A failed computation is forgotten so the next caller retries instead of
    caching the error for the life of the process.
    """

    def __init__(self, factory: Callable[[], Awaitable[T]]) -> None:
        self._factory = factory
        self._future: Optional[asyncio.Future[T]] = None

    async def get(self) -> T:
        if self._future is None:
            self._future = asyncio.ensure_future(self._factory())
            self._future.add_done_callback(self._forget_failure)
        # Shield so one cancelled caller does not cancel the shared fetch
        return await asyncio.shield(self._future)

    def _forget_failure(self, future: "asyncio.Future[T]") -> None:
        if future.cancelled() or future.exception() is not None:
            if self._future is future:
                self._future = None

    def reset(self) -> None:
        self._future = None


async def fetch_secret(secret_id: str, region: str) -> dict[str, str]:
    """Fetch the provider secret JSON from AWS Secrets Manager."""

    def _get() -> dict[str, str]:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=secret_id)
        return json.loads(response["SecretString"])

    return await asyncio.to_thread(_get)


def catalog_loader(secret_id: str, region: str) -> SingleFlight[IdentityCatalog]:
    async def _load() -> IdentityCatalog:
        secret = await fetch_secret(secret_id, region)
        catalog = build_catalog(secret)
        logger.info("loaded %d sending identities", len(catalog))
        return catalog

    return SingleFlight(_load)
