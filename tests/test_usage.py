"""test_usage.py - user gating and token usage records."""

import io
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from unittest import mock

from figmakeys.errors import AccessDeniedError, FigmakeysError
from figmakeys.usage import UsageStats, UsageStore, summarise_users

ADMIN = "lead@example.com"


class UsageStoreTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = UsageStore(str(Path(self.tmp.name) / "usage.sqlite3"), admin_email=ADMIN)

    def tearDown(self):
        self.store.close()
        self.tmp.cleanup()

    def log(self, email: str, tokens: int, cost: float, count: int = 3):
        return self.store.log_usage(
            user_email=email,
            figma_url="https://www.figma.com/design/abc/App",
            extracted_texts_count=count,
            extracted_texts_sample=["ようこそ", "次へ", "スキップ", "設定", "戻る", "閉じる"],
            prompt_tokens=tokens - 10,
            completion_tokens=10,
            total_tokens=tokens,
            cost=cost,
        )


class TestUsers(UsageStoreTestCase):

    def test_admin_registers_itself(self):
        user = self.store.get_or_create_user("  Lead@Example.com ")
        self.assertEqual(user.email, ADMIN)
        self.assertEqual(user.role, "admin")
        self.assertTrue(self.store.is_admin(ADMIN))
        # Second lookup returns the same row.
        self.assertEqual(self.store.get_or_create_user(ADMIN).id, user.id)

    def test_unknown_user_is_denied(self):
        with self.assertRaises(AccessDeniedError):
            self.store.get_or_create_user("someone@example.com")
        self.assertIsNone(self.store.get_user("someone@example.com"))

    def test_added_user_gets_access(self):
        self.store.add_user("Dev@Example.com")
        user = self.store.get_or_create_user("dev@example.com")
        self.assertEqual(user.role, "user")
        self.assertFalse(self.store.is_admin("dev@example.com"))

    def test_add_user_validation(self):
        self.store.add_user("dev@example.com")
        with self.assertRaises(FigmakeysError):
            self.store.add_user("dev@example.com")
        with self.assertRaises(FigmakeysError):
            self.store.add_user("other@example.com", role="owner")
        with self.assertRaises(FigmakeysError):
            self.store.add_user("not-an-email")

    def test_add_user_fails_when_row_cannot_be_read_back(self):
        with mock.patch.object(self.store, "get_user", return_value=None):
            with self.assertRaises(FigmakeysError) as ctx:
                self.store.add_user("dev@example.com")
        self.assertIn("could not be read back", str(ctx.exception))

    def test_remove_user(self):
        self.store.add_user("dev@example.com")
        self.assertTrue(self.store.remove_user("dev@example.com"))
        self.assertFalse(self.store.remove_user("dev@example.com"))
        with self.assertRaises(FigmakeysError):
            self.store.remove_user(ADMIN)

    def test_list_users(self):
        self.store.add_user("a@example.com")
        self.store.add_user("b@example.com", role="admin")
        emails = {user.email for user in self.store.list_users()}
        self.assertEqual(emails, {"a@example.com", "b@example.com"})
        self.assertTrue(self.store.is_admin("b@example.com"))


class TestUsageLogs(UsageStoreTestCase):

    def test_log_keeps_five_samples(self):
        entry = self.log("dev@example.com", 120, 0.0001)
        self.assertIsNotNone(entry)
        self.assertEqual(entry.extracted_texts_sample, ["ようこそ", "次へ", "スキップ", "設定", "戻る"])
        self.assertEqual(entry.total_tokens, 120)
        self.assertEqual(entry.prompt_tokens, 110)

    def test_user_logs_and_stats(self):
        self.log("dev@example.com", 100, 0.25, count=2)
        self.log("dev@example.com", 300, 0.5, count=4)
        self.log(ADMIN, 50, 0.1)

        logs = self.store.get_user_usage_logs("dev@example.com")
        self.assertEqual(len(logs), 2)
        self.assertEqual(len(self.store.get_all_usage_logs()), 3)
        self.assertEqual(len(self.store.get_all_usage_logs(limit=1)), 1)

        stats = self.store.get_user_stats("dev@example.com")
        self.assertEqual(stats.request_count, 2)
        self.assertEqual(stats.total_texts, 6)
        self.assertEqual(stats.total_tokens, 400)
        self.assertAlmostEqual(stats.total_cost, 0.75)

    def test_stats_for_idle_user(self):
        stats = self.store.get_user_stats("idle@example.com")
        self.assertEqual(
            (stats.request_count, stats.total_texts, stats.total_tokens, stats.total_cost),
            (0, 0, 0, 0.0),
        )

    def test_all_users_stats_sorted_by_cost(self):
        self.log("cheap@example.com", 100, 0.01)
        self.log("pricey@example.com", 100, 0.9)
        stats = self.store.get_all_users_stats()
        self.assertEqual([item.user_email for item in stats], ["pricey@example.com", "cheap@example.com"])

    def test_log_failure_is_not_fatal(self):
        self.store.close()
        stderr = io.StringIO()
        with redirect_stderr(stderr):
            self.assertIsNone(self.log("dev@example.com", 100, 0.01))
        self.assertIn("Could not record token usage", stderr.getvalue())
        # Reopen so tearDown can close again.
        self.store = UsageStore(str(Path(self.tmp.name) / "usage.sqlite3"), admin_email=ADMIN)


class TestSummariseUsers(unittest.TestCase):

    def test_totals(self):
        totals = summarise_users([
            UsageStats("a@example.com", 2, 5, 300, 0.5),
            UsageStats("b@example.com", 1, 1, 100, 0.25),
        ])
        self.assertEqual(totals["users"], 2)
        self.assertEqual(totals["requests"], 3)
        self.assertEqual(totals["tokens"], 400)
        self.assertAlmostEqual(totals["cost"], 0.75)


if __name__ == "__main__":
    unittest.main()
