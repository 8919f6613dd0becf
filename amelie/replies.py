import logging
import re

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, an error occurred while generating the response. Please try again."
SEND_FAILED_REPLY = "Sorry, an error occurred while sending the response. Please try again."

_BLANK_RUN_RE = re.compile(r"\n{3,}")


def normalize_reply(text) -> str:
    if not isinstance(text, str) or not text.strip():
        logger.warning("refusing to send empty or non-text reply: %r", text)
        return FALLBACK_REPLY
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


async def send_reply(message, text) -> None:
    """Reply to `message` with one normalized text message."""
    body = normalize_reply(text)
    try:
        await message.reply_text(body, disable_web_page_preview=True)
    except Exception:
        logger.exception("failed to send reply")
        try:
            await message.reply_text(SEND_FAILED_REPLY)
        except Exception as e:
            logger.error("failed to send fallback reply: %s", e)
