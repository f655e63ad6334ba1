"""Shared pytest fixtures for budget-buddy tests."""

import sqlite3
from pathlib import Path

import pytest

from budget_buddy.config import WatcherConfig
from budget_buddy.models import SearchResult

CHAT_SCHEMA = """
CREATE TABLE handle (id TEXT, service TEXT);
CREATE TABLE message (
    text TEXT,
    attributedBody BLOB,
    handle_id INTEGER,
    is_from_me INTEGER DEFAULT 0,
    is_read INTEGER DEFAULT 0
);
CREATE TABLE attachment (filename TEXT, mime_type TEXT, transfer_name TEXT);
CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
"""


class ChatDB:
    """A throwaway Messages chat.db with just the tables the transport reads."""

    def __init__(self, path: Path):
        self.path = path
        conn = sqlite3.connect(path)
        conn.executescript(CHAT_SCHEMA)
        conn.commit()
        conn.close()

    def add_message(
        self,
        sender: str | None,
        text: str | None = None,
        is_from_me: bool = False,
        is_read: bool = False,
        attachments: list[tuple[str, str | None, str | None]] | None = None,
        service: str = "iMessage",
        attributed_body: bytes | None = None,
    ) -> int:
        """Insert a message; attachments are (filename, mime_type, transfer_name)."""
        conn = sqlite3.connect(self.path)
        try:
            handle_id = None
            if sender:
                row = conn.execute(
                    "SELECT ROWID FROM handle WHERE id = ? AND service = ?", (sender, service)
                ).fetchone()
                if row:
                    handle_id = row[0]
                else:
                    handle_id = conn.execute(
                        "INSERT INTO handle (id, service) VALUES (?, ?)", (sender, service)
                    ).lastrowid

            message_id = conn.execute(
                "INSERT INTO message (text, attributedBody, handle_id, is_from_me, is_read)"
                " VALUES (?, ?, ?, ?, ?)",
                (text, attributed_body, handle_id, int(is_from_me), int(is_read)),
            ).lastrowid

            for filename, mime_type, transfer_name in attachments or []:
                attachment_id = conn.execute(
                    "INSERT INTO attachment (filename, mime_type, transfer_name) VALUES (?, ?, ?)",
                    (filename, mime_type, transfer_name),
                ).lastrowid
                conn.execute(
                    "INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (?, ?)",
                    (message_id, attachment_id),
                )

            conn.commit()
            return message_id
        finally:
            conn.close()


@pytest.fixture
def chat_db(tmp_path):
    """Create an empty chat.db in a temp directory."""
    return ChatDB(tmp_path / "chat.db")


@pytest.fixture
def watcher_config(chat_db):
    """Watcher config pointing at the temp chat.db with a fast poll."""
    return WatcherConfig(chat_db_path=chat_db.path, poll_interval_seconds=0.01)


@pytest.fixture
def receipt_image(tmp_path):
    """A fake receipt image on disk."""
    path = tmp_path / "receipt.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
    return path


@pytest.fixture
def diner_results():
    """Three results with distinct affordability scores."""
    return [
        SearchResult(title="Luxury Cafe", url="https://luxury.example"),
        SearchResult(title="Budget Diner $5 meals", url="https://diner.example"),
        SearchResult(title="Corner Store", url="https://corner.example"),
    ]


def archive_text(text: str) -> bytes:
    """Archive ``text`` the way Messages stores it in message.attributedBody."""
    encoded = text.encode("utf-8")
    if len(encoded) < 0x80:
        length = bytes([len(encoded)])
    else:
        length = b"\x81" + len(encoded).to_bytes(2, "little")
    return (
        b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84\x12NSAttributedString\x00"
        b"\x84\x84\x08NSObject\x00\x85\x92\x84\x84\x84\x08NSString\x01\x94\x84\x01+"
        + length
        + encoded
        + b"\x86\x84\x02iI\x01\x05\x92\x84\x84\x84\x0cNSDictionary\x00"
    )


@pytest.fixture
def attributed_body():
    """Builder for attributedBody blobs."""
    return archive_text
