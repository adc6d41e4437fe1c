"""API keys for remote authentication, kept in a SQLite database."""

from __future__ import annotations

import secrets
import sqlite3
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

import bcrypt

API_PREFIX_LENGTH = 7
API_KEY_LENGTH = 32
BCRYPT_COST = 10

_URL_SAFE_ALPHABET = string.ascii_letters + string.digits + "-_"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS api_keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    prefix TEXT NOT NULL UNIQUE,
    hash BLOB NOT NULL,
    created_at TEXT,
    expiration TEXT,
    last_seen TEXT
)
"""


class APIKeyParseError(ValueError):
    """The key string is not of the form ``prefix.secret``."""

    def __init__(self, message: str = "Failed to parse ApiKey") -> None:
        super().__init__(message)


class APIKeyNotFoundError(LookupError):
    """No key with the requested prefix or id exists."""


def generate_random_string_url_safe(size: int) -> str:
    """Return ``size`` random characters from the URL-safe alphabet."""
    if size < 0:
        raise ValueError("size must not be negative")
    return "".join(secrets.choice(_URL_SAFE_ALPHABET) for _ in range(size))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(moment: datetime | None) -> datetime | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.astimezone(timezone.utc)


def _dump_time(moment: datetime | None) -> str | None:
    moment = _to_utc(moment)
    return moment.isoformat() if moment is not None else None


def _load_time(text: str | None) -> datetime | None:
    return datetime.fromisoformat(text) if text else None


@dataclass
class APIKey:
    """A stored API key; the secret part is kept only as a bcrypt hash."""

    id: int
    prefix: str
    hash: bytes
    created_at: datetime | None = None
    expiration: datetime | None = None
    last_seen: datetime | None = None

    def is_expired(self, at: datetime | None = None) -> bool:
        """True when the expiration lies strictly before ``at`` (default now)."""
        if self.expiration is None:
            return False
        return self.expiration < (_to_utc(at) or _now())


class APIKeyStore:
    """Creates, looks up, expires and validates API keys."""

    def __init__(self, path: str | Path) -> None:
        self._connection = sqlite3.connect(str(path))
        self._connection.row_factory = sqlite3.Row
        with self._connection:
            self._connection.execute(_SCHEMA)

    def __enter__(self) -> APIKeyStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    @staticmethod
    def _from_row(row: sqlite3.Row) -> APIKey:
        return APIKey(
            id=row["id"],
            prefix=row["prefix"],
            hash=bytes(row["hash"]),
            created_at=_load_time(row["created_at"]),
            expiration=_load_time(row["expiration"]),
            last_seen=_load_time(row["last_seen"]),
        )

    def create(self, expiration: datetime | None) -> tuple[str, APIKey]:
        """Create a key; the returned string is the only copy of the secret."""
        prefix = generate_random_string_url_safe(API_PREFIX_LENGTH)
        to_be_hashed = generate_random_string_url_safe(API_KEY_LENGTH)
        key_str = f"{prefix}.{to_be_hashed}"
        hashed = bcrypt.hashpw(
            to_be_hashed.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_COST)
        )
        created_at = _now()
        expiration = _to_utc(expiration)
        try:
            with self._connection:
                cursor = self._connection.execute(
                    "INSERT INTO api_keys (prefix, hash, created_at, expiration)"
                    " VALUES (?, ?, ?, ?)",
                    (prefix, hashed, _dump_time(created_at), _dump_time(expiration)),
                )
        except sqlite3.Error as exc:
            raise RuntimeError(f"failed to save API key to database: {exc}") from exc
        key = APIKey(
            id=cursor.lastrowid,
            prefix=prefix,
            hash=hashed,
            created_at=created_at,
            expiration=expiration,
        )
        return key_str, key

    def list(self) -> list[APIKey]:
        """All stored keys, oldest first."""
        rows = self._connection.execute("SELECT * FROM api_keys ORDER BY id")
        return [self._from_row(row) for row in rows]

    def get(self, prefix: str) -> APIKey:
        """The key with the given prefix."""
        row = self._connection.execute(
            "SELECT * FROM api_keys WHERE prefix = ? ORDER BY id LIMIT 1", (prefix,)
        ).fetchone()
        if row is None:
            raise APIKeyNotFoundError(f"no API key with prefix {prefix!r}")
        return self._from_row(row)

    def get_by_id(self, key_id: int) -> APIKey:
        """The key with the given id."""
        row = self._connection.execute(
            "SELECT * FROM api_keys WHERE id = ?", (key_id,)
        ).fetchone()
        if row is None:
            raise APIKeyNotFoundError(f"no API key with id {key_id}")
        return self._from_row(row)

    def destroy(self, key: APIKey) -> None:
        """Delete a key permanently."""
        with self._connection:
            self._connection.execute("DELETE FROM api_keys WHERE id = ?", (key.id,))

    def expire(self, key: APIKey) -> None:
        """Set the key's expiration to now, in the store and on ``key``."""
        now = _now()
        with self._connection:
            self._connection.execute(
                "UPDATE api_keys SET expiration = ? WHERE id = ?",
                (_dump_time(now), key.id),
            )
        key.expiration = now

    def validate(self, key_str: str) -> bool:
        """Check a ``prefix.secret`` string; False when the key has expired."""
        prefix, sep, hashed_part = key_str.partition(".")
        if not sep:
            raise APIKeyParseError()
        try:
            key = self.get(prefix)
        except APIKeyNotFoundError as exc:
            raise APIKeyNotFoundError(f"failed to validate api key: {exc}") from exc
        if key.is_expired():
            return False
        if not bcrypt.checkpw(hashed_part.encode("utf-8"), key.hash):
            raise ValueError("hashedPassword is not the hash of the given password")
        return True

    def close(self) -> None:
        """Close the database connection."""
        self._connection.close()