"""test_cli.py - argument parsing, output writing and user commands."""

import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

from figmakeys.cli import (
    build_parser,
    confirm_generation,
    execute_keygen,
    main,
    run_user_commands,
    write_output,
)
from figmakeys.errors import FigmakeysError
from figmakeys.pipeline import KeygenSummary, extract_candidates
from figmakeys.structures import GenerationResult, TokenUsage
from figmakeys.usage import UsageStore

from helpers import ScriptedProvider, figma_file, node, text

ADMIN = "lead@example.com"


def keygen_options(**overrides):
    options = dict(
        figma_url="https://www.figma.com/design/AbC123/App",
        existing_json_path="ja.json",
        page_id=None,
        include_hidden=False,
        smart_filters=True,
        grouped=False,
        batch_size=10,
        estimate_only=True,
        provider=None,
        model=None,
        api_key=None,
        figma_token=None,
        user_email=None,
        usage_store=None,
        settings=None,
        non_interactive=True,
        verbose=False,
        provider_debug=False,
        extract_debug=False,
    )
    options.update(overrides)
    return options


def make_summary(generated):
    document = figma_file(node("CANVAS", "Main", "0:1", node("FRAME", "Home", "1:1", text("1:2", "次へ"))))
    return KeygenSummary(
        figma_url="https://www.figma.com/design/AbC123/App",
        file_id="AbC123",
        extraction=extract_candidates(document, {}),
        generation=GenerationResult(
            generated_keys=generated,
            token_usage=TokenUsage(100, 20, 120),
            record_count=1,
        ),
        actual_cost=0.000027,
        elapsed_seconds=0.1,
    )


class TestParser(unittest.TestCase):

    def test_defaults(self):
        args = build_parser().parse_args(["https://www.figma.com/design/AbC123/App", "-j", "ja.json"])
        self.assertEqual(args.existing_json, "ja.json")
        self.assertFalse(args.grouped)
        self.assertFalse(args.include_hidden)
        self.assertIsNone(args.batch_size)

    def test_flags(self):
        args = build_parser().parse_args([
            "url", "-j", "ja.json", "--grouped", "-b", "5", "--page", "0:2",
            "--estimate-only", "-y", "--no-smart-filters", "-u", "dev@example.com",
        ])
        self.assertTrue(args.grouped)
        self.assertEqual(args.batch_size, 5)
        self.assertEqual(args.page_id, "0:2")
        self.assertTrue(args.estimate_only)
        self.assertTrue(args.non_interactive)
        self.assertTrue(args.no_smart_filters)
        self.assertEqual(args.user, "dev@example.com")


class TestExecuteKeygen(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.existing = self.dir / "ja.json"
        self.existing.write_text('{"menu_home": "ホーム"}', encoding="utf-8")

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_existing_json(self):
        code, summary, message = execute_keygen(
            **keygen_options(existing_json_path=str(self.dir / "missing.json"))
        )
        self.assertEqual(code, 1)
        self.assertIsNone(summary)
        self.assertTrue(message)

    def test_invalid_url_is_an_argument_error(self):
        code, summary, message = execute_keygen(
            **keygen_options(existing_json_path=str(self.existing), figma_url="not a url")
        )
        self.assertEqual(code, 2)
        self.assertIsNone(summary)
        self.assertEqual(message, "Invalid Figma URL format")


class TestWriteOutput(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.existing = self.dir / "ja.json"
        self.existing.write_text('{"menu_home": "ホーム"}', encoding="utf-8")

    def tearDown(self):
        self.tmp.cleanup()

    def test_writes_generated_keys(self):
        target = self.dir / "out" / "new.json"
        with redirect_stderr(io.StringIO()):
            write_output(
                make_summary({"home_next": "次へ"}),
                output=str(target),
                merge=False,
                existing_json_path=str(self.existing),
            )
        content = target.read_text(encoding="utf-8")
        self.assertIn("次へ", content)
        self.assertEqual(json.loads(content), {"home_next": "次へ"})

    def test_merge_to_stdout(self):
        stdout = io.StringIO()
        with redirect_stdout(stdout):
            write_output(
                make_summary({"home_next": "次へ"}),
                output=None,
                merge=True,
                existing_json_path=str(self.existing),
            )
        self.assertEqual(
            json.loads(stdout.getvalue()),
            {"menu_home": "ホーム", "home_next": "次へ"},
        )


class TestConfirmGeneration(unittest.TestCase):

    def ask(self, answers):
        extraction = make_summary({}).extraction
        stdout, stderr = io.StringIO(), io.StringIO()
        with mock.patch("sys.stdin", io.StringIO(answers)), \
                redirect_stdout(stdout), redirect_stderr(stderr):
            confirmed = confirm_generation(extraction)
        return confirmed, stdout.getvalue(), stderr.getvalue()

    def test_reprompts_until_answered(self):
        confirmed, stdout, stderr = self.ask("maybe\nY\n")
        self.assertTrue(confirmed)
        self.assertEqual(stderr.count("[y/n]"), 2)
        self.assertIn("Please respond with yes or no", stderr)
        self.assertEqual(stdout, "")

    def test_refusal(self):
        confirmed, stdout, _ = self.ask("no\n")
        self.assertFalse(confirmed)
        self.assertEqual(stdout, "")

    def test_end_of_input_declines(self):
        confirmed, _, _ = self.ask("")
        self.assertFalse(confirmed)


class TestMain(unittest.TestCase):

    URL = "https://www.figma.com/design/AbC123/App"

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.existing = self.dir / "ja.json"
        self.existing.write_text('{"menu_home": "ホーム"}', encoding="utf-8")
        self.settings = SimpleNamespace(
            FIGMAKEYS_PROVIDER_DEBUG=False,
            FIGMAKEYS_USAGE_DB=str(self.dir / "usage.sqlite3"),
            FIGMAKEYS_ADMIN_EMAIL=None,
            FIGMAKEYS_BATCH_SIZE=10,
            FIGMA_API_TOKEN=None,
        )
        document = figma_file(
            node(
                "CANVAS", "Main", "0:1",
                node("FRAME", "Home", "1:1", text("1:2", "ようこそ"), text("1:3", "次へ進む")),
            )
        )
        self.figma = mock.Mock()
        self.figma.fetch_file.return_value = document

    def tearDown(self):
        self.tmp.cleanup()

    def run_main(self, argv, provider=None, answers=""):
        stdout, stderr = io.StringIO(), io.StringIO()
        with mock.patch("figmakeys.cli.get_settings", return_value=self.settings), \
                mock.patch("figmakeys.cli.FigmaClient", return_value=self.figma), \
                mock.patch("figmakeys.pipeline.build_provider", return_value=provider), \
                mock.patch("sys.stdin", io.StringIO(answers)), \
                redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(argv)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_interactive_run_keeps_stdout_json(self):
        generated = {"home_welcome": "ようこそ", "home_next": "次へ進む"}
        provider = ScriptedProvider([generated])
        code, stdout, stderr = self.run_main(
            [self.URL, "-j", str(self.existing)], provider=provider, answers="y\n"
        )
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout), generated)
        self.assertIn("[y/n]", stderr)
        self.assertEqual(len(provider.calls), 1)

    def test_interactive_refusal_writes_nothing(self):
        provider = ScriptedProvider([])
        code, stdout, _ = self.run_main(
            [self.URL, "-j", str(self.existing)], provider=provider, answers="n\n"
        )
        self.assertEqual(code, 2)
        self.assertEqual(stdout, "")
        self.assertEqual(provider.calls, [])

    def test_zero_batch_size_is_rejected(self):
        with self.assertRaises(SystemExit) as ctx:
            self.run_main([self.URL, "-j", str(self.existing), "-b", "0", "-y"])
        self.assertEqual(ctx.exception.code, 2)
        self.figma.fetch_file.assert_not_called()

    def test_batch_size_from_settings(self):
        self.settings.FIGMAKEYS_BATCH_SIZE = 0
        with self.assertRaises(SystemExit) as ctx:
            self.run_main([self.URL, "-j", str(self.existing), "-y"])
        self.assertEqual(ctx.exception.code, 2)


class TestUserCommands(unittest.TestCase):

    def setUp(self):
        self.store = UsageStore(":memory:", admin_email=ADMIN)

    def tearDown(self):
        self.store.close()

    def run_command(self, *argv):
        args = build_parser().parse_args(list(argv))
        output = io.StringIO()
        with redirect_stdout(output), redirect_stderr(output):
            code = run_user_commands(args, self.store)
        return code, output.getvalue()

    def test_admin_adds_user(self):
        code, output = self.run_command("-u", ADMIN, "--add-user", "dev@example.com")
        self.assertEqual(code, 0)
        self.assertIn("Added dev@example.com (user).", output)
        self.assertIsNotNone(self.store.get_user("dev@example.com"))

    def test_regular_user_cannot_add_users(self):
        self.store.add_user("dev@example.com")
        code, output = self.run_command("-u", "dev@example.com", "--add-user", "x@example.com")
        self.assertEqual(code, 1)
        self.assertIn("Unauthorized", output)
        self.assertIsNone(self.store.get_user("x@example.com"))

    def test_admin_lists_users(self):
        self.store.add_user("dev@example.com")
        code, output = self.run_command("-u", ADMIN, "--list-users")
        self.assertEqual(code, 0)
        self.assertIn("dev@example.com (user", output)
        self.assertIn(f"{ADMIN} (admin", output)

    def test_admin_removes_user(self):
        self.store.add_user("dev@example.com")
        code, output = self.run_command("-u", ADMIN, "--remove-user", "dev@example.com")
        self.assertEqual(code, 0)
        self.assertIn("Removed dev@example.com.", output)
        self.assertIsNone(self.store.get_user("dev@example.com"))

    def test_removing_unknown_user(self):
        code, output = self.run_command("-u", ADMIN, "--remove-user", "ghost@example.com")
        self.assertEqual(code, 1)
        self.assertIn("No registered user ghost@example.com.", output)

    def test_configured_admin_cannot_be_removed(self):
        with self.assertRaises(FigmakeysError):
            self.run_command("-u", ADMIN, "--remove-user", ADMIN)
        self.assertIsNotNone(self.store.get_user(ADMIN))

    def test_regular_user_cannot_manage_users(self):
        self.store.add_user("dev@example.com")
        self.store.add_user("qa@example.com")
        for argv in (["--list-users"], ["--remove-user", "qa@example.com"]):
            with self.subTest(argv=argv):
                code, output = self.run_command("-u", "dev@example.com", *argv)
                self.assertEqual(code, 1)
                self.assertIn("Unauthorized", output)
                self.assertNotIn("qa@example.com", output)
        self.assertIsNotNone(self.store.get_user("qa@example.com"))

    def test_usage_report_for_user(self):
        self.store.add_user("dev@example.com")
        code, output = self.run_command("-u", "dev@example.com", "--usage-report")
        self.assertEqual(code, 0)
        self.assertIn("0 requests", output)


if __name__ == "__main__":
    unittest.main()
