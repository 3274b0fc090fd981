from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Sequence

import pymysql

from .errors import StoreReadError, StoreWriteError
from .models import RepositorySummary, UserRecord

LOGGER = logging.getLogger("ghbridge.store")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS bot_users (
        chat_id VARCHAR(64) NOT NULL PRIMARY KEY,
        github_id VARCHAR(64) NULL,
        github_token VARCHAR(255) NULL,
        github_username VARCHAR(255) NULL,
        has_agreed TINYINT(1) NOT NULL DEFAULT 0,
        is_linked TINYINT(1) NOT NULL DEFAULT 0,
        created_at DATETIME(6) NOT NULL,
        last_active_at DATETIME(6) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bot_user_repositories (
        chat_id VARCHAR(64) NOT NULL,
        position INT NOT NULL,
        name VARCHAR(255) NOT NULL,
        full_name VARCHAR(512) NOT NULL,
        url VARCHAR(1024) NULL,
        is_private TINYINT(1) NOT NULL DEFAULT 0,
        PRIMARY KEY (chat_id, position)
    )
    """,
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_naive_utc(value: datetime) -> datetime:
    return _as_utc(value).replace(tzinfo=None)


class UserStore:
    """MySQL-backed store holding one row per chat id plus its repo mirror."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str,
        password: str,
        database: str,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database

    @contextmanager
    def _connection(self) -> Iterator[pymysql.connections.Connection]:
        connection = pymysql.connect(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            database=self.database,
            cursorclass=pymysql.cursors.DictCursor,
            autocommit=False,
        )
        try:
            yield connection
        finally:
            connection.close()

    def ensure_schema(self) -> None:
        try:
            with self._connection() as connection:
                with connection.cursor() as cursor:
                    for statement in SCHEMA_STATEMENTS:
                        cursor.execute(statement)
                connection.commit()
        except pymysql.MySQLError as exc:
            raise StoreWriteError(f"Failed to create schema: {exc}") from exc

    def get(self, chat_id: str) -> Optional[UserRecord]:
        try:
            with self._connection() as connection:
                with connection.cursor() as cursor:
                    cursor.execute(
                        """
                        SELECT chat_id, github_id, github_token, github_username,
                               has_agreed, created_at, last_active_at
                        FROM bot_users
                        WHERE chat_id = %s
                        """,
                        (chat_id,),
                    )
                    row = cursor.fetchone()
                    if not row:
                        return None
                    cursor.execute(
                        """
                        SELECT name, full_name, url, is_private
                        FROM bot_user_repositories
                        WHERE chat_id = %s
                        ORDER BY position ASC
                        """,
                        (chat_id,),
                    )
                    repo_rows = cursor.fetchall()
        except pymysql.MySQLError as exc:
            raise StoreReadError(f"Failed to load user {chat_id}: {exc}") from exc
        return self._row_to_record(row, repo_rows)

    def save(self, record: UserRecord) -> UserRecord:
        """Insert or update ``record`` and replace its repository rows."""
        try:
            with self._connection() as connection:
                try:
                    with connection.cursor() as cursor:
                        cursor.execute(
                            """
                            INSERT INTO bot_users (
                                chat_id, github_id, github_token, github_username,
                                has_agreed, is_linked, created_at, last_active_at
                            )
                            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                            ON DUPLICATE KEY UPDATE
                                github_id = VALUES(github_id),
                                github_token = VALUES(github_token),
                                github_username = VALUES(github_username),
                                has_agreed = VALUES(has_agreed),
                                is_linked = VALUES(is_linked),
                                last_active_at = VALUES(last_active_at)
                            """,
                            (
                                record.chat_id,
                                record.github_id,
                                record.github_token,
                                record.github_username,
                                int(record.has_agreed),
                                int(record.is_linked),
                                _as_naive_utc(record.created_at),
                                _as_naive_utc(record.last_active_at),
                            ),
                        )
                        cursor.execute(
                            "DELETE FROM bot_user_repositories WHERE chat_id = %s",
                            (record.chat_id,),
                        )
                        if record.repositories:
                            cursor.executemany(
                                """
                                INSERT INTO bot_user_repositories (
                                    chat_id, position, name, full_name, url, is_private
                                )
                                VALUES (%s, %s, %s, %s, %s, %s)
                                """,
                                [
                                    (
                                        record.chat_id,
                                        position,
                                        repo.name,
                                        repo.full_name,
                                        repo.url,
                                        int(repo.private),
                                    )
                                    for position, repo in enumerate(record.repositories)
                                ],
                            )
                    connection.commit()
                except pymysql.MySQLError:
                    connection.rollback()
                    raise
        except pymysql.MySQLError as exc:
            raise StoreWriteError(f"Failed to save user {record.chat_id}: {exc}") from exc
        LOGGER.debug("Saved user chat_id=%s linked=%s", record.chat_id, record.is_linked)
        return record

    @staticmethod
    def _row_to_record(
        row: Dict[str, object], repo_rows: Sequence[Dict[str, object]]
    ) -> UserRecord:
        repositories: List[RepositorySummary] = [
            RepositorySummary(
                name=repo_row["name"],
                full_name=repo_row["full_name"],
                url=repo_row.get("url"),
                private=bool(repo_row["is_private"]),
            )
            for repo_row in repo_rows
        ]
        return UserRecord(
            chat_id=str(row["chat_id"]),
            github_id=row.get("github_id"),
            github_token=row.get("github_token"),
            github_username=row.get("github_username"),
            has_agreed=bool(row["has_agreed"]),
            created_at=_as_utc(row["created_at"]),
            last_active_at=_as_utc(row["last_active_at"]),
            repositories=repositories,
        )
