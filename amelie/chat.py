import argparse
import logging

from amelie.config import BOT_NAME, DB_PATH, MAX_HISTORY
from amelie.db import connect, init_db
from amelie.generation import GenerationClient
from amelie.replies import normalize_reply
from amelie.router import InboundEvent, handle_event

DEFAULT_CHAT_ID = "console"


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Chat with the bot from the terminal")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--chat", default=DEFAULT_CHAT_ID, help="Chat id to use for history, prompts and config")
    parser.add_argument("--name", default="you", help="Sender name recorded in history")
    return parser.parse_args(argv)


def console_event(chat_id: str, sender: str, text: str) -> InboundEvent:
    return InboundEvent(chat_id=chat_id, sender=sender, body=text)


def main(argv=None):
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)

    generator = GenerationClient()
    conn = connect(DB_PATH)
    init_db(conn)

    chat_id = args.chat
    print(f"Chat: {chat_id}")
    print("Console commands: /chat <id>, /exit. Bot commands start with '!' (try !help).")

    try:
        while True:
            user_text = input("> ").strip()
            if not user_text:
                continue

            if user_text == "/exit":
                break

            if user_text.startswith("/chat "):
                chat_id = user_text.split(" ", 1)[1].strip() or DEFAULT_CHAT_ID
                print(f"Chat: {chat_id}")
                continue

            reply = handle_event(
                conn,
                generator,
                console_event(chat_id, args.name, user_text),
                max_history=MAX_HISTORY,
                default_bot_name=BOT_NAME,
            )
            if reply is not None:
                print(normalize_reply(reply))
    finally:
        conn.close()


if __name__ == "__main__":
    try:
        main()
    except (KeyboardInterrupt, EOFError):
        pass
