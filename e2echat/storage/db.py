# e2echat/storage/db.py
import argparse
import asyncio
import os
from typing import List, Optional

import pymysql
from dotenv import load_dotenv

from e2echat.common.errors import DirectoryUnavailable, NotFound, RegistrationError
from e2echat.common.protocol import StoredMessage
from e2echat.crypto.digest import digests_match
from e2echat.storage.directory import DirectoryService, hash_password, validate_registration

load_dotenv()

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        username   VARCHAR(255) PRIMARY KEY,
        pwd_hash   CHAR(64) NOT NULL,
        created_at DATETIME(6) NOT NULL DEFAULT CURRENT_TIMESTAMP(6)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public_keys (
        username   VARCHAR(255) PRIMARY KEY,
        public_key TEXT NOT NULL,
        created_at DATETIME(6) NOT NULL DEFAULT CURRENT_TIMESTAMP(6)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS session_keys (
        sender        VARCHAR(255) NOT NULL,
        receiver      VARCHAR(255) NOT NULL,
        encrypted_key TEXT NOT NULL,
        created_at    DATETIME(6) NOT NULL DEFAULT CURRENT_TIMESTAMP(6),
        PRIMARY KEY (sender, receiver)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id        BIGINT AUTO_INCREMENT PRIMARY KEY,
        sender    VARCHAR(255) NOT NULL,
        receiver  VARCHAR(255) NOT NULL,
        envelope  TEXT NOT NULL,
        digest    CHAR(64) NOT NULL,
        ts        DATETIME(6) NOT NULL DEFAULT CURRENT_TIMESTAMP(6),
        INDEX idx_pair (sender, receiver)
    )
    """,
)


def get_connection():
    return pymysql.connect(
        host=os.getenv("MYSQL_HOST", "127.0.0.1"),
        port=int(os.getenv("MYSQL_PORT", "3307")),
        user=os.getenv("MYSQL_USER", "scuser"),
        password=os.getenv("MYSQL_PASSWORD", "12345678"),
        database=os.getenv("MYSQL_DB", "securechat"),
        autocommit=True,
    )


def init_schema():
    conn = get_connection()
    try:
        with conn.cursor() as cur:
            for stmt in SCHEMA:
                cur.execute(stmt)
    finally:
        conn.close()
    print("[+] users/public_keys/session_keys/messages tables created/verified")


class MySQLDirectory(DirectoryService):
    """
    Directory backed by MySQL through pymysql.

    pymysql is blocking, so every query runs in a worker thread. One
    connection per call; any MySQLError surfaces as DirectoryUnavailable.
    """

    def __init__(self, connect=get_connection):
        self._connect = connect

    def _run(self, sql: str, args=None, fetch: str = "none"):
        try:
            conn = self._connect()
        except pymysql.MySQLError as e:
            raise DirectoryUnavailable(f"cannot connect to MySQL: {e}") from e
        try:
            with conn.cursor() as cur:
                cur.execute(sql, args)
                if fetch == "one":
                    return cur.fetchone()
                if fetch == "all":
                    return cur.fetchall()
                if fetch == "lastrowid":
                    return cur.lastrowid
                return cur.rowcount
        except pymysql.MySQLError as e:
            raise DirectoryUnavailable(f"query failed: {e}") from e
        finally:
            conn.close()

    async def _query(self, sql: str, args=None, fetch: str = "none"):
        return await asyncio.to_thread(self._run, sql, args, fetch)

    async def _require_user(self, username: str) -> None:
        row = await self._query("SELECT 1 FROM users WHERE username = %s", (username,), "one")
        if not row:
            raise NotFound(username)

    async def register_user(self, username: str, password: str) -> None:
        validate_registration(username, password)
        try:
            await self._query(
                "INSERT INTO users (username, pwd_hash) VALUES (%s, %s)",
                (username, hash_password(password)),
            )
        except DirectoryUnavailable as e:
            if isinstance(e.__cause__, pymysql.err.IntegrityError):
                raise RegistrationError("username already exists", username) from e
            raise

    async def authenticate(self, username: str, password: str) -> bool:
        row = await self._query(
            "SELECT pwd_hash FROM users WHERE username = %s", (username,), "one"
        )
        if not row:
            return False
        return digests_match(row[0], hash_password(password))

    async def put_public_key(self, identity: str, public_key: str) -> None:
        await self._require_user(identity)
        await self._query(
            """
            INSERT INTO public_keys (username, public_key) VALUES (%s, %s)
            ON DUPLICATE KEY UPDATE public_key = VALUES(public_key)
            """,
            (identity, public_key),
        )

    async def get_public_key(self, identity: str) -> str:
        row = await self._query(
            "SELECT public_key FROM public_keys WHERE username = %s", (identity,), "one"
        )
        if not row:
            raise NotFound(identity, "public key")
        return row[0]

    async def delete_public_key(self, identity: str) -> None:
        await self._query("DELETE FROM public_keys WHERE username = %s", (identity,))

    async def put_directed_key(self, sender: str, receiver: str, encrypted_key: str) -> None:
        await self._require_user(sender)
        await self._require_user(receiver)
        await self._query(
            """
            INSERT INTO session_keys (sender, receiver, encrypted_key) VALUES (%s, %s, %s)
            ON DUPLICATE KEY UPDATE encrypted_key = VALUES(encrypted_key),
                                    created_at = CURRENT_TIMESTAMP(6)
            """,
            (sender, receiver, encrypted_key),
        )

    async def get_directed_key(self, sender: str, receiver: str) -> str:
        row = await self._query(
            "SELECT encrypted_key FROM session_keys WHERE sender = %s AND receiver = %s",
            (sender, receiver),
            "one",
        )
        if not row:
            raise NotFound(f"{sender}->{receiver}", "session key")
        return row[0]

    async def put_message(self, sender: str, receiver: str, envelope: str, digest: str) -> str:
        await self._require_user(sender)
        await self._require_user(receiver)
        row_id = await self._query(
            "INSERT INTO messages (sender, receiver, envelope, digest) VALUES (%s, %s, %s, %s)",
            (sender, receiver, envelope, digest),
            "lastrowid",
        )
        return str(row_id)

    async def get_messages(self, user_a: str, user_b: str) -> List[StoredMessage]:
        rows = await self._query(
            """
            SELECT id, sender, receiver, envelope, digest, ts FROM messages
            WHERE (sender = %s AND receiver = %s) OR (sender = %s AND receiver = %s)
            ORDER BY ts ASC, id ASC
            """,
            (user_a, user_b, user_b, user_a),
            "all",
        )
        return [
            StoredMessage(
                id=str(r[0]), sender=r[1], receiver=r[2], envelope=r[3], digest=r[4], timestamp=r[5]
            )
            for r in rows
        ]

    async def list_reachable_identities(self, excluding: Optional[str] = None) -> List[str]:
        rows = await self._query(
            """
            SELECT p.username FROM public_keys p JOIN users u ON u.username = p.username
            ORDER BY p.username
            """,
            fetch="all",
        )
        return [r[0] for r in rows if r[0] != excluding]


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--init", action="store_true", help="Initialize DB schema")
    args = parser.parse_args()

    if args.init:
        init_schema()
