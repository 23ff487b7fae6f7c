"""test_configuration.py - consistency checks on loaded settings."""

import unittest
from types import SimpleNamespace

from figmakeys.configuration import settings_problems


def settings(**overrides):
    values = dict(
        LLM_PROVIDER="openai",
        FIGMAKEYS_BATCH_SIZE=10,
        AZURE_OPENAI_API_KEY=None,
        AZURE_OPENAI_ENDPOINT=None,
        AZURE_OPENAI_API_VERSION=None,
        AZURE_OPENAI_DEPLOYMENT_NAME=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestSettingsProblems(unittest.TestCase):

    def test_defaults_are_usable_without_keys(self):
        self.assertEqual(settings_problems(settings()), [])

    def test_batch_size(self):
        problems = settings_problems(settings(FIGMAKEYS_BATCH_SIZE=0))
        self.assertEqual(problems, ["FIGMAKEYS_BATCH_SIZE must be at least 1."])

    def test_incomplete_azure(self):
        problems = settings_problems(
            settings(LLM_PROVIDER="azure_openai", AZURE_OPENAI_API_KEY="key")
        )
        self.assertEqual(len(problems), 1)
        self.assertIn("AZURE_OPENAI_ENDPOINT", problems[0])
        self.assertNotIn("AZURE_OPENAI_API_KEY", problems[0])


if __name__ == "__main__":
    unittest.main()
