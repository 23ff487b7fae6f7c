"""User access and token usage records backed by SQLite."""

from __future__ import annotations

import json
import sqlite3
import sys
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .errors import AccessDeniedError, FigmakeysError

SAMPLE_SIZE = 5
ROLES = frozenset({"admin", "user"})

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS users ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "email TEXT UNIQUE NOT NULL, "
    "role TEXT NOT NULL DEFAULT 'user', "
    "created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)",
    "CREATE TABLE IF NOT EXISTS usage_logs ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "user_email TEXT NOT NULL, "
    "figma_url TEXT NOT NULL, "
    "extracted_texts_count INTEGER NOT NULL, "
    "extracted_texts_sample TEXT, "
    "prompt_tokens INTEGER NOT NULL, "
    "completion_tokens INTEGER NOT NULL, "
    "total_tokens INTEGER NOT NULL, "
    "cost REAL NOT NULL, "
    "created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)",
    "CREATE INDEX IF NOT EXISTS idx_usage_logs_user_email ON usage_logs(user_email)",
    "CREATE INDEX IF NOT EXISTS idx_usage_logs_created_at ON usage_logs(created_at DESC)",
)


def normalise_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class User:
    id: int
    email: str
    role: str
    created_at: str


@dataclass
class UsageLog:
    id: int
    user_email: str
    figma_url: str
    extracted_texts_count: int
    extracted_texts_sample: List[Any]
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: float
    created_at: str


@dataclass
class UsageStats:
    user_email: str
    request_count: int
    total_texts: int
    total_tokens: int
    total_cost: float


class UsageStore:
    """Registered users and per-request token usage.

    The configured admin email is the only identity allowed to register
    itself; every other user has to be added by an administrator.
    """

    def __init__(self, path: str, *, admin_email: str | None = None) -> None:
        self._path = path
        self._lock = threading.Lock()
        self.admin_email = normalise_email(admin_email) if admin_email else None
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            for statement in SCHEMA:
                self._conn.execute(statement)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def is_admin(self, email: str) -> bool:
        normalized = normalise_email(email)
        if self.admin_email and normalized == self.admin_email:
            return True
        user = self.get_user(normalized)
        return user is not None and user.role == "admin"

    def get_user(self, email: str) -> Optional[User]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM users WHERE email = ?", (normalise_email(email),)
            ).fetchone()
        return self._to_user(row) if row else None

    def get_or_create_user(self, email: str) -> User:
        """Return the registered user, auto-registering only the admin."""

        normalized = normalise_email(email)
        user = self.get_user(normalized)
        if user is not None:
            return user
        if self.admin_email and normalized == self.admin_email:
            return self.add_user(normalized, "admin")
        raise AccessDeniedError(
            "User not found. Please contact your administrator to get access."
        )

    def add_user(self, email: str, role: str = "user") -> User:
        if role not in ROLES:
            raise FigmakeysError(f"Unknown role '{role}'. Use one of: admin, user.")
        normalized = normalise_email(email)
        if not normalized or "@" not in normalized:
            raise FigmakeysError(f"Invalid email address '{email}'.")
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT INTO users (email, role) VALUES (?, ?)", (normalized, role)
                )
                self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise FigmakeysError(f"User {normalized} already exists.") from exc
        user = self.get_user(normalized)
        if user is None:
            raise FigmakeysError(f"User {normalized} could not be read back after insert.")
        return user

    def remove_user(self, email: str) -> bool:
        normalized = normalise_email(email)
        if self.admin_email and normalized == self.admin_email:
            raise FigmakeysError("The configured administrator cannot be removed.")
        with self._lock:
            cursor = self._conn.execute("DELETE FROM users WHERE email = ?", (normalized,))
            self._conn.commit()
        return cursor.rowcount > 0

    def list_users(self) -> List[User]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM users ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [self._to_user(row) for row in rows]

    def log_usage(
        self,
        *,
        user_email: str,
        figma_url: str,
        extracted_texts_count: int,
        extracted_texts_sample: Sequence[Any],
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
        cost: float,
    ) -> Optional[UsageLog]:
        """Record one generation request.

        Never raises: a failed write is reported on stderr and ``None`` is
        returned so the generated keys are still delivered.
        """

        try:
            sample = json.dumps(list(extracted_texts_sample[:SAMPLE_SIZE]), ensure_ascii=False)
            with self._lock:
                cursor = self._conn.execute(
                    "INSERT INTO usage_logs (user_email, figma_url, extracted_texts_count, "
                    "extracted_texts_sample, prompt_tokens, completion_tokens, "
                    "total_tokens, cost) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        normalise_email(user_email),
                        figma_url,
                        extracted_texts_count,
                        sample,
                        prompt_tokens,
                        completion_tokens,
                        total_tokens,
                        cost,
                    ),
                )
                self._conn.commit()
                row = self._conn.execute(
                    "SELECT * FROM usage_logs WHERE id = ?", (cursor.lastrowid,)
                ).fetchone()
            return self._to_log(row)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            print(f"Could not record token usage: {exc}", file=sys.stderr)
            return None

    def get_user_usage_logs(self, email: str, limit: int = 50) -> List[UsageLog]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM usage_logs WHERE user_email = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (normalise_email(email), limit),
            ).fetchall()
        return [self._to_log(row) for row in rows]

    def get_all_usage_logs(self, limit: int = 100) -> List[UsageLog]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM usage_logs ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._to_log(row) for row in rows]

    def get_user_stats(self, email: str) -> UsageStats:
        normalized = normalise_email(email)
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS request_count, "
                "COALESCE(SUM(extracted_texts_count), 0) AS total_texts, "
                "COALESCE(SUM(total_tokens), 0) AS total_tokens, "
                "COALESCE(SUM(cost), 0) AS total_cost "
                "FROM usage_logs WHERE user_email = ?",
                (normalized,),
            ).fetchone()
        return UsageStats(
            user_email=normalized,
            request_count=row["request_count"],
            total_texts=row["total_texts"],
            total_tokens=row["total_tokens"],
            total_cost=float(row["total_cost"]),
        )

    def get_all_users_stats(self) -> List[UsageStats]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT user_email, COUNT(*) AS request_count, "
                "SUM(extracted_texts_count) AS total_texts, "
                "SUM(total_tokens) AS total_tokens, "
                "SUM(cost) AS total_cost "
                "FROM usage_logs GROUP BY user_email ORDER BY total_cost DESC"
            ).fetchall()
        return [
            UsageStats(
                user_email=row["user_email"],
                request_count=row["request_count"],
                total_texts=row["total_texts"],
                total_tokens=row["total_tokens"],
                total_cost=float(row["total_cost"]),
            )
            for row in rows
        ]

    @staticmethod
    def _to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            role=row["role"],
            created_at=str(row["created_at"]),
        )

    @staticmethod
    def _to_log(row: sqlite3.Row) -> UsageLog:
        raw_sample = row["extracted_texts_sample"]
        return UsageLog(
            id=row["id"],
            user_email=row["user_email"],
            figma_url=row["figma_url"],
            extracted_texts_count=row["extracted_texts_count"],
            extracted_texts_sample=json.loads(raw_sample) if raw_sample else [],
            prompt_tokens=row["prompt_tokens"],
            completion_tokens=row["completion_tokens"],
            total_tokens=row["total_tokens"],
            cost=float(row["cost"]),
            created_at=str(row["created_at"]),
        )


def summarise_users(stats: Sequence[UsageStats]) -> Dict[str, float]:
    """Totals across all users, for the admin report."""

    return {
        "users": len(stats),
        "requests": sum(item.request_count for item in stats),
        "tokens": sum(item.total_tokens for item in stats),
        "cost": sum(item.total_cost for item in stats),
    }
