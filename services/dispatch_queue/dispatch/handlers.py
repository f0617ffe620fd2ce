"""Handlers for each queue event action.

Every handler takes the shared :class:`DispatchContext` and its typed event.
Broadcasts write one audit record and fan out to recipients concurrently;
the record key is the event's ``dispatch_key`` so a redelivered event
rewrites the same record instead of adding another.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Sequence

from dispatch import audit
from dispatch import constants as c
from dispatch.composer import (
    NO_VOICES,
    compose_announcement,
    compose_login_code,
    compose_new_subscriber,
    compose_page,
    compose_peer_message,
    compose_phone_issue,
    compose_transcript_notice,
    compose_welcome,
)
from dispatch.context import SOURCE, DispatchContext
from dispatch.dispatcher import OutboundText, SendResult
from dispatch.errors import ConfigurationError, RejectedMessage
from dispatch.events import (
    ActivateEvent,
    AlertEvent,
    AnnounceEvent,
    InboundTextEvent,
    LoginEvent,
    PageEvent,
    PhoneIssueEvent,
    TranscriptionEvent,
)
from dispatch.formatting import file_key_to_datetime, format_phone, now_ms, parse_phone, random_code
from dispatch.identities import ALERT_IDENTITY, IdentityCatalog, SendingIdentity
from dispatch.inbound import classify
from dispatch.metrics import (
    CONFIGURATION_ERROR_TOTAL,
    INBOUND_TEXT_TOTAL,
    PAGE_DURATION_SECONDS,
    PAGE_TO_QUEUE_SECONDS,
)
from dispatch.models import User
from dispatch.recipients import ALL, resolve
from dispatch.selector import chat_identity, select_identity


logger = logging.getLogger(__name__)


def _key(event) -> int:
    return event.dispatch_key or audit.allocate_key()


async def send_single(
    ctx: DispatchContext,
    type: str,
    key: int,
    phone: str,
    identity: str,
    body: str,
    media: Sequence[str] = (),
    department: Optional[str] = None,
    is_test: bool = False,
) -> SendResult:
    """Record and send a text addressed to one person."""
    _, result = await asyncio.gather(
        audit.record(ctx.store, type, key, 1, body, media, department=department, is_test=is_test),
        ctx.dispatcher.dispatch(SOURCE, type, key, phone, identity, body, media),
    )
    return result


async def broadcast(
    ctx: DispatchContext,
    type: str,
    key: int,
    recipients: Sequence[User],
    record_body: str,
    render: Callable[[User], OutboundText],
    stored_media: Sequence[str] = (),
    file_key: Optional[str] = None,
    topic: Optional[int] = None,
    department: Optional[str] = None,
    is_test: bool = False,
) -> list[SendResult]:
    """Write the audit record and fan out one text per recipient."""
    _, results = await asyncio.gather(
        audit.record(
            ctx.store, type, key, len(recipients), record_body, stored_media,
            file_key=file_key, topic=topic, department=department, is_test=is_test,
        ),
        ctx.dispatcher.dispatch_many(SOURCE, type, key, [render(u) for u in recipients]),
    )
    return results


def _per_user_identity(ctx: DispatchContext, catalog: IdentityCatalog) -> Callable[[User], str]:
    departments = ctx.directory.departments
    return lambda user: select_identity(user, departments, catalog)


# activate


async def handle_activate(ctx: DispatchContext, event: ActivateEvent) -> None:
    """Activate a membership, welcome the member, and tell the department admins."""
    dept = ctx.directory.require_department(event.department)
    user = await ctx.store.activate_membership(event.phone, dept.id)
    if user is None:
        raise ConfigurationError(f"Cannot activate unknown user {event.phone} in {dept.id}")

    catalog = await ctx.directory.identities()
    if dept.page_identity not in catalog:
        logger.error("no page identity configured for department %s; activation texts not sent", event.department)
        CONFIGURATION_ERROR_TOTAL.labels(reason="missing_page_identity").inc()
        return

    key = _key(event)
    settings = ctx.settings
    identity_for = _per_user_identity(ctx, catalog)

    page_number = format_phone(parse_phone(catalog.require(dept.page_identity).number))
    welcome = compose_welcome(dept, [ctx.directory.topic_label(t) for t in user.topics], page_number)
    welcome_identity = dept.page_identity if dept.is_page_only else dept.channel_identity()
    tasks = [send_single(ctx, c.TYPE_ACCOUNT, key, user.phone, welcome_identity, welcome, is_test=user.is_test)]

    users = await ctx.store.list_users()
    admins = [
        u for u in users
        if u.is_district_admin or (u.membership(dept.id) is not None and u.membership(dept.id).admin)
    ]
    if admins:
        alert = compose_new_subscriber(user.f_name, user.l_name, user.phone, dept.id)

        def render_alert(admin: User) -> OutboundText:
            identity = identity_for(admin) if dept.is_page_only else dept.channel_identity()
            return OutboundText(admin.phone, identity, alert)

        tasks.append(
            broadcast(ctx, c.TYPE_DEPARTMENT_ALERT, key + 1, admins, alert, render_alert, department=dept.id)
        )

    if user.topics:
        tone = await ctx.store.latest_tone_file(user.topics[0])
        if tone is not None:
            sample = compose_page(
                tone.key, tone.topic, ctx.directory.topics,
                time_zone=settings.time_zone, link_base=settings.page_link_base_url,
            )
            tasks.append(
                send_single(ctx, c.TYPE_ACCOUNT, key + 2, user.phone, dept.page_identity, sample, is_test=user.is_test)
            )

    await asyncio.gather(*tasks)
    logger.info("activated %s in %s", user.phone, dept.id)


# inbound-text


def _media_with_credentials(urls: Sequence[str], identity: SendingIdentity) -> list[str]:
    """Media links as stored on the audit record, fetchable without the provider console."""
    if not identity.has_credentials:
        return list(urls)
    prefix = f"https://{identity.account_sid}:{identity.auth_token}@"
    return [u.replace("https://", prefix, 1) for u in urls]


async def handle_inbound_text(ctx: DispatchContext, event: InboundTextEvent) -> None:
    if not event.from_number:
        logger.warning("inbound text to %s without a sender; ignoring", event.to_number)
        INBOUND_TEXT_TOTAL.labels(outcome="no_sender").inc()
        return

    catalog = await ctx.directory.identities()
    channel = catalog.for_number(event.to_number)
    reply_to = parse_phone(event.from_number)
    sender = await ctx.store.get_user(reply_to)

    decision = classify(channel, sender, event.text, ctx.directory.departments)
    INBOUND_TEXT_TOTAL.labels(outcome=decision.reason).inc()
    logger.info("inbound text from %s to %s: %s", event.from_number, event.to_number, decision.reason)

    if decision.kind == "drop":
        return

    if decision.kind == "command":
        await ctx.store.update_user(reply_to, is_test=decision.test_mode)

    if decision.kind in ("reply", "command"):
        await ctx.dispatcher.dispatch(SOURCE, "reply", None, reply_to, channel.name, decision.reply)
        return

    dept = ctx.directory.require_department(decision.department)
    is_test = sender.is_test
    recipients = await resolve(ctx.store, dept.id, None, is_test, ctx.settings.testing_user)
    if not (is_test or decision.include_sender):
        recipients = [u for u in recipients if u.phone != sender.phone]

    sender_label = sender.display_name(dept.id)
    media = event.media_urls
    key = _key(event)

    if decision.is_announcement:
        body = compose_announcement(dept.short_name, event.text, sender_label)
        type = c.TYPE_DEPARTMENT_ANNOUNCEMENT
        identity_for = _per_user_identity(ctx, catalog)
    else:
        body = compose_peer_message(sender_label, event.text)
        type = c.TYPE_DEPARTMENT_TEXT
        identity = chat_identity(dept)
        identity_for = lambda _user: identity  # noqa: E731

    await broadcast(
        ctx, type, key, recipients, body,
        lambda u: OutboundText(u.phone, identity_for(u), body, media),
        stored_media=_media_with_credentials(media, channel),
        department=dept.id,
        is_test=is_test,
    )


# announce


async def handle_announce(ctx: DispatchContext, event: AnnounceEvent) -> None:
    """Operator announcement to a department or to a talkgroup's subscribers."""
    sender = await ctx.store.get_user(event.phone)
    if sender is None:
        raise ConfigurationError(f"Unknown announcer {event.phone}")

    scope = event.department or ALL
    recipients = await resolve(ctx.store, scope, event.topic, event.is_test, ctx.settings.testing_user)
    if not recipients:
        raise RejectedMessage("Message sent to empty group")

    if event.department:
        dept = ctx.directory.require_department(event.department)
        label = dept.short_name
        sender_label = sender.display_name(dept.id)
        type = c.TYPE_DEPARTMENT_ANNOUNCEMENT
    else:
        topic = ctx.directory.topic(event.topic)
        if event.topic is not None and topic is None:
            raise ConfigurationError(f"Unknown talkgroup {event.topic}")
        label = f"{topic.party} Pages" if topic is not None else ""
        sender_label = sender.full_name
        type = c.TYPE_PAGE_ANNOUNCEMENT

    body = compose_announcement(label, event.body, sender_label)
    catalog = await ctx.directory.identities()
    identity_for = _per_user_identity(ctx, catalog)
    await broadcast(
        ctx, type, _key(event), recipients, body,
        lambda u: OutboundText(u.phone, identity_for(u), body),
        topic=event.topic,
        department=event.department,
        is_test=event.is_test,
    )


# page


async def handle_page(ctx: DispatchContext, event: PageEvent) -> None:
    """Page notification to every subscriber of the talkgroup."""
    handled_at = now_ms()
    if ctx.directory.topic(event.topic) is None:
        raise ConfigurationError(f"Invalid paging talkgroup - {event.topic} - {event.key}")

    page_time = file_key_to_datetime(event.key)
    if event.is_test:
        logger.info("test page %s on %s", event.key, event.topic)
    else:
        PAGE_DURATION_SECONDS.observe(event.duration)
        PAGE_TO_QUEUE_SECONDS.observe(max(0.0, handled_at / 1000 - page_time.timestamp() - event.duration))

    users = await resolve(ctx.store, ALL, event.topic, event.is_test, ctx.settings.testing_user)
    recipients = [u for u in users if not u.get_transcript_only]

    settings = ctx.settings

    def body_for(number: Optional[str]) -> str:
        return compose_page(
            event.key, event.topic, ctx.directory.topics, number=number,
            time_zone=settings.time_zone, link_base=settings.page_link_base_url, page_time=page_time,
        )

    catalog = await ctx.directory.identities()
    identity_for = _per_user_identity(ctx, catalog)
    await broadcast(
        ctx, c.TYPE_PAGE, _key(event), recipients, body_for(None),
        lambda u: OutboundText(u.phone, identity_for(u), body_for(u.phone)),
        file_key=event.key,
        topic=event.topic,
        is_test=event.is_test,
    )


# login / auth-code


async def handle_login(ctx: DispatchContext, event: LoginEvent) -> None:
    """Issue a one-time login code and text it to the user."""
    code = random_code(6, numeric=True)
    expiry = now_ms() + ctx.settings.login_code_ttl_ms
    user = await ctx.store.update_user(event.phone, code=code, code_expiry=expiry)
    if user is None:
        raise ConfigurationError(f"Cannot issue login code to unknown user {event.phone}")

    catalog = await ctx.directory.identities()
    identity = select_identity(user, ctx.directory.departments, catalog)
    await send_single(ctx, c.TYPE_ACCOUNT, _key(event), user.phone, identity, compose_login_code(code), is_test=user.is_test)


# transcription-complete


async def handle_transcription(ctx: DispatchContext, event: TranscriptionEvent) -> None:
    if ctx.transcripts is None:
        raise ConfigurationError("No transcript source configured")

    job = await ctx.transcripts.fetch(event.job_name)
    tags = {**job.tags, **(event.tags or {})}
    transcript = job.transcript.strip() or NO_VOICES
    settings = ctx.settings
    file_name = tags.get("File")

    if tags.get("Talkgroup"):
        topic_id = int(tags["Talkgroup"])
        record_body = compose_page(
            file_name or "", topic_id, ctx.directory.topics, transcript=transcript,
            time_zone=settings.time_zone, link_base=settings.page_link_base_url,
        )
        if tags.get("FileKey"):
            file = await ctx.store.find_file(tags["FileKey"])
            if file is None:
                logger.warning("transcribed file %s not found", tags["FileKey"])
            else:
                await ctx.store.set_file_transcript(file, transcript)
    else:
        topic_id = int(event.job_name.split("-")[0])
        topic = ctx.directory.topic(topic_id)
        if topic is None:
            raise ConfigurationError(f"Invalid paging talkgroup - {topic_id} - {event.job_name}")
        record_body = compose_transcript_notice(topic, transcript, settings.page_link_base_url)

    if tags.get("IsPage") == "n":
        return

    users = await resolve(ctx.store, ALL, topic_id, False)
    recipients = [u for u in users if u.get_transcript]

    def body_for(user: User) -> str:
        if not file_name:
            return record_body
        return compose_page(
            file_name, topic_id, ctx.directory.topics, number=user.phone, transcript=transcript,
            time_zone=settings.time_zone, link_base=settings.page_link_base_url,
        )

    catalog = await ctx.directory.identities()
    identity_for = _per_user_identity(ctx, catalog)
    await broadcast(
        ctx, c.TYPE_TRANSCRIPT, _key(event), recipients, record_body,
        lambda u: OutboundText(u.phone, identity_for(u), body_for(u)),
        file_key=file_name,
        topic=topic_id,
    )


# phone-issue


async def handle_phone_issue(ctx: DispatchContext, event: PhoneIssueEvent) -> None:
    """Tell the affected user's department admins their texts are not arriving."""
    users = await ctx.store.list_users()
    admins = [
        u for u in users
        if u.phone != event.number and any(u.is_admin_in(d) for d in event.departments)
    ]
    if not admins:
        logger.warning("no admins to alert about %s", event.number)
        return

    body = compose_phone_issue(event.name, event.number, event.count)
    catalog = await ctx.directory.identities()
    identity_for = _per_user_identity(ctx, catalog)
    await broadcast(
        ctx, c.TYPE_DEPARTMENT_ALERT, _key(event), admins, body,
        lambda u: OutboundText(u.phone, identity_for(u), body),
        department=event.departments[0] if event.departments else None,
    )


# alert


async def handle_alert(ctx: DispatchContext, event: AlertEvent) -> None:
    """System alert to every user who opted into the alert's category."""
    users = await resolve(ctx.store, ALL, None, False)
    opted_in = f"get_{event.category.lower()}_alerts"
    recipients = [u for u in users if getattr(u, opted_in)]
    if not recipients:
        raise RejectedMessage(f"No recipients found for {event.category} alert")

    await broadcast(
        ctx, c.TYPE_ALERT, _key(event), recipients, event.body,
        lambda u: OutboundText(u.phone, ALERT_IDENTITY, event.body),
    )
