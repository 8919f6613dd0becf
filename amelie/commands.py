import logging
import sqlite3
from typing import List, Tuple

from amelie import history, prompts
from amelie.chat_config import (
    ConfigError,
    canonical_param,
    format_value,
    get_active_prompt_name,
    get_params,
    set_param,
)

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "!"

HELP_TEXT = (
    "Available commands:\n"
    "!reset - Clear the conversation history\n"
    "!prompt set <name> <text> - Define a new System Instruction\n"
    "!prompt get <name> - Show an existing System Instruction\n"
    "!prompt list - List all System Instructions\n"
    "!prompt use <name> - Use a specific System Instruction\n"
    "!prompt clear - Remove the active System Instruction\n"
    "!config set <param> <value> - Set a generation parameter\n"
    "!config get [param] - Show the current configuration\n"
    "!help - Show this help message"
)
UNKNOWN_COMMAND = "Unknown command. Use !help to see available commands."
COMMAND_FAILED = "Sorry, an error occurred while executing the command. Please try again."


def is_command(body: str) -> bool:
    return (body or "").lstrip().startswith(COMMAND_PREFIX)


def parse_command(raw_body: str) -> Tuple[str, List[str]]:
    """
    "!prompt set  bob Be nice" -> ("prompt", ["set", "bob", "Be", "nice"])
    """
    body = (raw_body or "").lstrip()
    if body.startswith(COMMAND_PREFIX):
        body = body[len(COMMAND_PREFIX):]
    parts = body.split()
    if not parts:
        return "", []
    return parts[0].lower(), parts[1:]


def _prompt_command(conn: sqlite3.Connection, chat_id: str, args: List[str]) -> str:
    sub = args[0].lower() if args else ""
    name = args[1] if len(args) > 1 else None
    rest = args[2:]

    if sub == "set":
        if not name or not rest:
            return "Correct usage: !prompt set <name> <text>"
        prompts.set_prompt(conn, chat_id, name, " ".join(rest))
        return f'System Instruction "{name}" set successfully.'

    if sub == "get":
        if not name:
            return "Correct usage: !prompt get <name>"
        prompt = prompts.get_prompt(conn, chat_id, name)
        if prompt is None:
            return f'System Instruction "{name}" not found.'
        return f'System Instruction "{name}":\n{prompt.text}'

    if sub == "list":
        names = [p.name for p in prompts.list_prompts(conn, chat_id)]
        if not names:
            return "No System Instructions defined."
        return "Available System Instructions: " + ", ".join(names)

    if sub == "use":
        if not name:
            return "Correct usage: !prompt use <name>"
        if not prompts.activate(conn, chat_id, name):
            return f'System Instruction "{name}" not found.'
        return f'System Instruction "{name}" activated for this chat.'

    if sub == "clear":
        prompts.deactivate(conn, chat_id)
        return "System Instruction removed. Using the default model."

    return "Unknown prompt subcommand. Use !help to see available commands."


def _config_command(conn: sqlite3.Connection, chat_id: str, args: List[str]) -> str:
    sub = args[0].lower() if args else ""
    param = args[1] if len(args) > 1 else None

    if sub == "set":
        if not param or len(args) < 3:
            return "Correct usage: !config set <param> <value>"
        try:
            value = set_param(conn, chat_id, param, args[2])
        except ConfigError as e:
            return str(e)
        return f"Parameter {canonical_param(param)} set to {format_value(value)}"

    if sub == "get":
        params = get_params(conn, chat_id)
        if param:
            name = canonical_param(param)
            if name is None:
                return f"Unknown parameter: {param}"
            return f"{name}: {format_value(params[name])}"
        lines = [f"{k}: {format_value(v)}" for k, v in params.items()]
        active = get_active_prompt_name(conn, chat_id)
        if active:
            lines.append(f"activePrompt: {active}")
        return "Current configuration:\n" + "\n".join(lines)

    return "Unknown config subcommand. Use !help to see available commands."


def _dispatch(conn: sqlite3.Connection, chat_id: str, command: str, args: List[str]) -> str:
    if command == "reset":
        removed = history.reset(conn, chat_id)
        logger.info("history reset for chat %s (%d records)", chat_id, removed)
        return "🤖 Chat history reset"
    if command == "help":
        return HELP_TEXT
    if command == "test":
        return "Test command executed successfully!"
    if command == "prompt":
        return _prompt_command(conn, chat_id, args)
    if command == "config":
        return _config_command(conn, chat_id, args)
    return UNKNOWN_COMMAND


def handle_command(conn: sqlite3.Connection, chat_id: str, raw_body: str) -> str:
    command, args = parse_command(raw_body)
    logger.info("command %r args=%s chat=%s", command, args, chat_id)
    try:
        return _dispatch(conn, chat_id, command, args)
    except Exception:
        logger.exception("command %r failed for chat %s", command, chat_id)
        return COMMAND_FAILED
