import os
import unittest
from unittest import mock

import config


class EnvHelperTests(unittest.TestCase):
    def test_missing_or_empty_returns_default(self):
        with mock.patch.dict(os.environ, {"MESSENGER_TEST_VALUE": ""}):
            self.assertEqual(config._env("MESSENGER_TEST_VALUE", 7, int), 7)
        self.assertEqual(config._env("MESSENGER_TEST_UNSET_VALUE", "x"), "x")

    def test_casts_and_bools(self):
        with mock.patch.dict(os.environ, {"MESSENGER_TEST_INT": "12", "MESSENGER_TEST_BOOL": "Yes"}):
            self.assertEqual(config._env("MESSENGER_TEST_INT", 0, int), 12)
            self.assertTrue(config._env("MESSENGER_TEST_BOOL", False, bool))
        with mock.patch.dict(os.environ, {"MESSENGER_TEST_BOOL": "off"}):
            self.assertFalse(config._env("MESSENGER_TEST_BOOL", True, bool))

    def test_bad_cast_falls_back_to_default(self):
        with mock.patch.dict(os.environ, {"MESSENGER_TEST_INT": "sixteen"}):
            self.assertEqual(config._env("MESSENGER_TEST_INT", 16, int), 16)

    def test_banner_mentions_daemon_placement(self):
        with mock.patch("builtins.print") as printed:
            config.print_banner()
        text = printed.call_args[0][0]
        self.assertIn("MESSENGER STORE", text)
        self.assertIn("Daemon:", text)


if __name__ == "__main__":
    unittest.main()
