"""
Tests for the interactive prompts: answers, defaults and EOF handling.
"""

import io
import unittest
from unittest.mock import patch

from waydroid_tools import prompt


class TestPrompt(unittest.TestCase):

    def setUp(self):
        stdout = patch("sys.stdout", new_callable=io.StringIO)
        stdout.start()
        self.addCleanup(stdout.stop)

    def test_ask_strips_answer(self):
        with patch("builtins.input", return_value="  1 3 5 "):
            self.assertEqual(prompt.ask("Enter selection"), "1 3 5")

    def test_ask_eof_gives_default(self):
        with patch("builtins.input", side_effect=EOFError):
            self.assertEqual(prompt.ask("Select [1-16]", default="16"), "16")

    def test_ask_empty_is_not_default(self):
        with patch("builtins.input", return_value=""):
            self.assertEqual(prompt.ask("Enter selection", default="0"), "")

    def test_confirm(self):
        with patch("builtins.input", return_value="y"):
            self.assertTrue(prompt.confirm("Update it?"))
        with patch("builtins.input", return_value="n"):
            self.assertFalse(prompt.confirm("Update it?", default=True))

    def test_confirm_empty_and_eof_give_default(self):
        with patch("builtins.input", return_value=""):
            self.assertFalse(prompt.confirm("Continue anyway?"))
            self.assertTrue(prompt.confirm("Continue anyway?", default=True))
        with patch("builtins.input", side_effect=EOFError):
            self.assertTrue(prompt.confirm("Continue anyway?", default=True))


if __name__ == "__main__":
    unittest.main()
