"""
Inbound message routing.

The router is transport-agnostic: adapters (Telegram, the console REPL)
convert their native messages into an InboundEvent and call handle_event,
which returns the reply text or None when the bot stays silent.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from amelie import history
from amelie.chat_config import EffectiveConfig, get_effective
from amelie.commands import handle_command, is_command
from amelie.config import BOT_NAME, MAX_HISTORY
from amelie.generation import GenerationClient, GenerationError, apology_for

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_REQUEST = "What is in this image?"
UNSUPPORTED_MEDIA_REPLY = "Sorry, I can only process audio and images at the moment."
UNEXPECTED_ERROR_REPLY = "Sorry, an unexpected error occurred. Please try again later."
REPEATED_REPLY = "Sorry, it looks like I already answered that. Try asking something different."


@dataclass
class MediaPayload:
    kind: str  # "image", "audio" or "other"
    data: bytes = b""
    mime_type: str = ""
    filename: str = ""


@dataclass
class InboundEvent:
    chat_id: str
    sender: str
    body: str = ""
    from_me: bool = False
    is_group: bool = False
    mentions: List[str] = field(default_factory=list)
    quoted_from_me: bool = False
    media: Optional[MediaPayload] = None

    @property
    def has_media(self) -> bool:
        return self.media is not None


def is_similar(text: str, previous: str) -> bool:
    # Placeholder for duplicate-answer suppression; no similarity measure is applied.
    return False


def should_respond(event: InboundEvent, bot_names: Union[str, Iterable[str]], bot_handles: Iterable[str] = ()) -> bool:
    """
    Group gating: a mention of one of the bot's handles, a reply to a bot
    message, or any of `bot_names` inside the body (case-insensitive).
    """
    handles = {h.lower() for h in bot_handles if h}
    if any((m or "").lower() in handles for m in event.mentions):
        return True
    if event.quoted_from_me:
        return True
    if isinstance(bot_names, str):
        bot_names = [bot_names]
    body = (event.body or "").lower()
    return any(name and name.lower() in body for name in bot_names)


def _wants_reply(
    event: InboundEvent, effective: EffectiveConfig, default_bot_name: str, bot_handles: Iterable[str]
) -> bool:
    if not event.is_group:
        return True
    # the configured name keeps working as a trigger when a prompt renames the bot
    return should_respond(event, (effective.bot_name, default_bot_name), bot_handles)


def wants_reply(
    conn: sqlite3.Connection,
    event: InboundEvent,
    *,
    bot_handles: Iterable[str] = (),
    default_bot_name: str = BOT_NAME,
) -> bool:
    """Whether handle_event would answer this event; adapters use it to skip media downloads."""
    if event.from_me:
        return False
    effective = get_effective(conn, event.chat_id, default_bot_name=default_bot_name)
    return _wants_reply(event, effective, default_bot_name, bot_handles)


def _history_content(event: InboundEvent) -> str:
    body = (event.body or "").strip()
    if body or not event.has_media:
        return body
    return f"[{event.media.kind}]"


def _handle_text(
    conn: sqlite3.Connection,
    generator: GenerationClient,
    event: InboundEvent,
    effective: EffectiveConfig,
    *,
    max_history: int,
) -> str:
    # the inbound message is already the last entry of the window
    lines = history.history(conn, event.chat_id, max_history=max_history)
    prompt = "\n".join(lines + [f"{effective.bot_name}:"])
    previous = history.last_bot_message(conn, event.chat_id)

    try:
        reply = generator.generate_text(effective, prompt)
    except GenerationError as e:
        logger.warning("text generation failed for chat %s: %s: %s", event.chat_id, type(e).__name__, e)
        return apology_for(e)

    if previous and is_similar(reply, previous):
        return REPEATED_REPLY

    history.append(conn, event.chat_id, effective.bot_name, reply, is_bot=True, max_history=max_history)
    return reply


def _handle_media(
    conn: sqlite3.Connection,
    generator: GenerationClient,
    event: InboundEvent,
    effective: EffectiveConfig,
    *,
    max_history: int,
) -> str:
    media = event.media
    try:
        if media.kind == "image":
            request = (event.body or "").strip() or DEFAULT_IMAGE_REQUEST
            reply = generator.describe_image(effective, media.data, media.mime_type, request)
        elif media.kind == "audio":
            reply = generator.transcribe_audio(effective, media.data, media.filename, media.mime_type)
        else:
            return UNSUPPORTED_MEDIA_REPLY
    except GenerationError as e:
        logger.warning("%s handling failed for chat %s: %s: %s", media.kind, event.chat_id, type(e).__name__, e)
        return apology_for(e)

    history.append(conn, event.chat_id, effective.bot_name, reply, is_bot=True, max_history=max_history)
    return reply


def handle_event(
    conn: sqlite3.Connection,
    generator: GenerationClient,
    event: InboundEvent,
    *,
    bot_handles: Iterable[str] = (),
    max_history: int = MAX_HISTORY,
    default_bot_name: str = BOT_NAME,
) -> Optional[str]:
    if event.from_me:
        return None

    try:
        effective = get_effective(conn, event.chat_id, default_bot_name=default_bot_name)
        respond = _wants_reply(event, effective, default_bot_name, bot_handles)

        command = is_command(event.body)
        # commands and their replies stay out of the conversation the model sees
        if not command:
            history.append(conn, event.chat_id, event.sender, _history_content(event), max_history=max_history)

        if not respond:
            logger.debug("staying silent in group %s", event.chat_id)
            return None

        if command:
            return handle_command(conn, event.chat_id, event.body)
        if event.has_media:
            return _handle_media(conn, generator, event, effective, max_history=max_history)
        return _handle_text(conn, generator, event, effective, max_history=max_history)
    except Exception:
        logger.exception("unexpected error handling message in chat %s", event.chat_id)
        return UNEXPECTED_ERROR_REPLY
