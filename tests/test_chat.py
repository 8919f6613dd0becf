import unittest
from unittest.mock import patch

from amelie import chat
from amelie.commands import HELP_TEXT
from amelie.db import connect


class EchoGenerator:
    def __init__(self):
        self.prompts = []

    def generate_text(self, effective, prompt):
        self.prompts.append(prompt)
        return "echo\r\n\r\n\r\ndone"


class ConsoleTests(unittest.TestCase):
    def test_console_event_is_direct_text(self):
        event = chat.console_event("console", "you", "hi")
        self.assertEqual((event.chat_id, event.sender, event.body), ("console", "you", "hi"))
        self.assertFalse(event.is_group)
        self.assertFalse(event.has_media)

    def test_repl_routes_commands_and_text(self):
        gen = EchoGenerator()
        conn = connect(":memory:")
        inputs = ["", "!help", "/chat other", "hello", "/exit"]

        with patch.object(chat, "connect", return_value=conn), \
                patch.object(chat, "GenerationClient", return_value=gen), \
                patch("builtins.input", side_effect=inputs), \
                patch("builtins.print") as fake_print:
            chat.main(["--name", "tester"])

        printed = [c.args[0] for c in fake_print.call_args_list]
        self.assertIn(HELP_TEXT, printed)
        self.assertIn("Chat: other", printed)
        self.assertIn("echo\n\ndone", printed)
        self.assertEqual(len(gen.prompts), 1)
        self.assertTrue(gen.prompts[0].startswith("tester: hello\n"))


if __name__ == "__main__":
    unittest.main()
