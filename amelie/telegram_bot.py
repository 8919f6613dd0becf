"""
Telegram bridge for the bot.
- Uses long polling (no public webhook needed).
- Converts updates into router events; the blocking pipeline runs in the default executor.
- Schedules one cancellable inactivity job per chat.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Iterable, List, Optional, Set

from telegram import Message, MessageEntity, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from amelie import history
from amelie.config import (
    BOT_NAME,
    DB_PATH,
    INACTIVITY_RESET_HISTORY,
    INACTIVITY_RESET_SECONDS,
    LOG_PATH,
    MAX_HISTORY,
)
from amelie.commands import HELP_TEXT
from amelie.db import connect, init_db
from amelie.generation import GenerationClient
from amelie.replies import send_reply
from amelie.router import InboundEvent, MediaPayload, handle_event, wants_reply

logger = logging.getLogger(__name__)

GENERATOR = GenerationClient()
_DB_READY = False

GROUP_CHAT_TYPES = ("group", "supergroup")


def _init_db_if_needed():
    global _DB_READY
    if _DB_READY:
        return
    conn = connect(DB_PATH)
    try:
        init_db(conn)
        _DB_READY = True
    finally:
        conn.close()


def _parse_allowed_ids(raw: Optional[str]) -> Set[str]:
    if not raw:
        return set()
    parts = [p.strip() for p in raw.replace(";", ",").split(",") if p.strip()]
    return {p for p in parts if p}


def _sender_name(user) -> str:
    if user is None:
        return "unknown"
    return getattr(user, "full_name", None) or getattr(user, "username", None) or str(user.id)


def _mention_handles(message: Message) -> List[str]:
    """Usernames (without '@') and user ids the message mentions, in text or caption."""
    kinds = [MessageEntity.MENTION, MessageEntity.TEXT_MENTION]
    found = {}
    if message.entities:
        found.update(message.parse_entities(kinds))
    if message.caption_entities:
        found.update(message.parse_caption_entities(kinds))

    handles: List[str] = []
    for entity, text in found.items():
        if entity.type == MessageEntity.TEXT_MENTION and entity.user is not None:
            handles.append(str(entity.user.id))
        else:
            handles.append(text.lstrip("@").lower())
    return handles


def _bot_handles(bot) -> Set[str]:
    handles = {str(bot.id)}
    if getattr(bot, "username", None):
        handles.add(bot.username.lower())
    return handles


async def _download(file_like) -> bytes:
    tg_file = await file_like.get_file()
    return bytes(await tg_file.download_as_bytearray())


async def _media_from_message(message: Message, *, download: bool = True) -> Optional[MediaPayload]:
    """Describe the message's attachment; bytes are fetched only when `download` is set."""

    async def fetch(file_like) -> bytes:
        return await _download(file_like) if download else b""

    if message.photo:
        data = await fetch(message.photo[-1])
        return MediaPayload(kind="image", data=data, mime_type="image/jpeg", filename="photo.jpg")
    if message.voice:
        data = await fetch(message.voice)
        return MediaPayload(kind="audio", data=data, mime_type=message.voice.mime_type or "audio/ogg", filename="voice.ogg")
    if message.audio:
        data = await fetch(message.audio)
        return MediaPayload(
            kind="audio",
            data=data,
            mime_type=message.audio.mime_type or "audio/mpeg",
            filename=message.audio.file_name or "audio.mp3",
        )
    if message.document:
        mime = message.document.mime_type or ""
        if mime.startswith("image/") or mime.startswith("audio/"):
            data = await fetch(message.document)
            return MediaPayload(
                kind=mime.split("/", 1)[0],
                data=data,
                mime_type=mime,
                filename=message.document.file_name or "",
            )
        return MediaPayload(kind="other", mime_type=mime, filename=message.document.file_name or "")
    if message.video or message.video_note or message.sticker or message.animation:
        return MediaPayload(kind="other")
    return None


async def event_from_update(
    update: Update, context: ContextTypes.DEFAULT_TYPE, *, download_media: bool = True
) -> Optional[InboundEvent]:
    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None:
        return None

    bot = context.bot
    user = message.from_user
    quoted = message.reply_to_message
    quoted_user = quoted.from_user if quoted is not None else None

    return InboundEvent(
        chat_id=str(chat.id),
        sender=_sender_name(user),
        body=message.text or message.caption or "",
        from_me=user is not None and user.id == bot.id,
        is_group=chat.type in GROUP_CHAT_TYPES,
        mentions=_mention_handles(message),
        quoted_from_me=quoted_user is not None and quoted_user.id == bot.id,
        media=await _media_from_message(message, download=download_media),
    )


def handle_user_event(event: InboundEvent, bot_handles: Iterable[str] = ()) -> Optional[str]:
    _init_db_if_needed()
    conn = connect(DB_PATH, check_same_thread=False)
    try:
        return handle_event(
            conn,
            GENERATOR,
            event,
            bot_handles=bot_handles,
            max_history=MAX_HISTORY,
            default_bot_name=BOT_NAME,
        )
    finally:
        conn.close()


def event_wants_reply(event: InboundEvent, bot_handles: Iterable[str] = ()) -> bool:
    _init_db_if_needed()
    conn = connect(DB_PATH, check_same_thread=False)
    try:
        return wants_reply(conn, event, bot_handles=bot_handles, default_bot_name=BOT_NAME)
    finally:
        conn.close()


def _reset_history_sync(chat_id: str) -> int:
    _init_db_if_needed()
    conn = connect(DB_PATH, check_same_thread=False)
    try:
        return history.reset(conn, chat_id)
    finally:
        conn.close()


async def inactivity_job(context: ContextTypes.DEFAULT_TYPE):
    chat_id = context.job.data
    if not INACTIVITY_RESET_HISTORY:
        logger.info("session for chat %s went inactive", chat_id)
        return
    loop = asyncio.get_running_loop()
    removed = await loop.run_in_executor(None, _reset_history_sync, chat_id)
    logger.info("session for chat %s reset after inactivity (%d records)", chat_id, removed)


def _inactivity_job_name(chat_id: str) -> str:
    return f"inactivity:{chat_id}"


def _schedule_inactivity_reset(app, chat_id: str, *, delay: int = INACTIVITY_RESET_SECONDS) -> bool:
    job_queue = getattr(app, "job_queue", None)
    if job_queue is None:
        logger.warning("Job queue unavailable; inactivity reset disabled. Install python-telegram-bot[job-queue].")
        return False
    name = _inactivity_job_name(chat_id)
    for job in job_queue.get_jobs_by_name(name):
        job.schedule_removal()
    job_queue.run_once(inactivity_job, delay, data=chat_id, name=name)
    return True


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    if not message or not update.effective_chat:
        return

    allowed: Set[str] = context.application.bot_data.get("allowed_ids", set())
    user = update.effective_user
    if allowed and (user is None or str(user.id) not in allowed):
        await send_reply(message, "Access denied for this bot. Ask the owner to whitelist your user id.")
        return

    bot_handles = _bot_handles(context.bot)
    loop = asyncio.get_running_loop()
    try:
        event = await event_from_update(update, context, download_media=False)
        if event is not None and not event.from_me and event.has_media and event.media.kind != "other":
            # silent group messages only record a [kind] marker, so skip the download
            if not event.is_group or await loop.run_in_executor(None, event_wants_reply, event, bot_handles):
                event.media = await _media_from_message(message)
    except Exception:
        logger.exception("failed to read inbound message")
        await send_reply(message, "Sorry, I couldn't read that message. Please try again.")
        return
    if event is None or event.from_me:
        return

    try:
        reply = await loop.run_in_executor(None, handle_user_event, event, bot_handles)
    except Exception:
        logger.exception("handle_user_event failed")
        reply = "Sorry, an unexpected error occurred. Please try again later."

    if reply is not None:
        await send_reply(message, reply)

    _schedule_inactivity_reset(context.application, event.chat_id)


async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if update.effective_message:
        await send_reply(update.effective_message, f"Hi! I'm {BOT_NAME}. Just send me a message.\n\n{HELP_TEXT}")


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error("unhandled error while processing update %r", update, exc_info=context.error)


def _log_uncaught(exc_type, exc, tb):
    # uncaught exceptions are fatal; logging happens before the interpreter exits
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))
    sys.exit(1)


def _log_loop_exception(loop, ctx):
    # failed background tasks are logged and the loop keeps running
    logger.error("Unhandled error in event loop: %s", ctx.get("message"), exc_info=ctx.get("exception"))


async def _post_init(app: Application):
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    me = await app.bot.get_me()
    logger.info("Logged in as @%s (id %s)", me.username, me.id)


def _configure_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler(LOG_PATH, encoding="utf-8")],
    )
    # keep polling noise out of the log file
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Telegram chat bot backed by a language model")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = _parse_args(argv)
    _configure_logging(args.debug)
    sys.excepthook = _log_uncaught

    _init_db_if_needed()
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not token:
        raise SystemExit("Set TELEGRAM_BOT_TOKEN in your environment or .env file.")

    allowed_ids = _parse_allowed_ids(os.getenv("TELEGRAM_ALLOWED_USER_IDS"))

    app = Application.builder().token(token).post_init(_post_init).build()
    app.bot_data["allowed_ids"] = allowed_ids

    app.add_handler(CommandHandler("start", handle_start))
    media_filter = (
        filters.PHOTO | filters.VOICE | filters.AUDIO | filters.Document.ALL
        | filters.VIDEO | filters.VIDEO_NOTE | filters.ANIMATION | filters.Sticker.ALL
    )
    app.add_handler(MessageHandler((filters.TEXT & ~filters.COMMAND) | media_filter, handle_message))
    app.add_error_handler(on_error)

    logger.info("Starting Telegram bot (long polling). Allowed IDs: %s", allowed_ids or "any")
    app.run_polling(allowed_updates=Update.ALL_TYPES, drop_pending_updates=True)


if __name__ == "__main__":
    main()
