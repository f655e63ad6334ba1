"""
iMessage transport for budget-buddy.

Reads incoming messages by polling the Messages ``chat.db`` SQLite database
and sends replies by driving the Messages app through AppleScript. Only works
on macOS with Full Disk Access granted to the running process.
"""

import asyncio
import contextlib
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from pathlib import Path

from .config import WatcherConfig
from .models import Attachment, IncomingMessage, UnreadGroup

logger = logging.getLogger(__name__)

SEND_SCRIPT = """tell application "Messages"
    set targetService to 1st account whose service type = {service}
    set targetBuddy to participant "{recipient}" of targetService
    send "{text}" to targetBuddy
end tell"""

IS_RUNNING_SCRIPT = 'application "Messages" is running'

# AppleScript service type constants, keyed by handle.service in chat.db
SERVICE_TYPES = {"iMessage": "iMessage", "SMS": "SMS"}
DEFAULT_SERVICE = "iMessage"

NSSTRING_MARKER = b"NSString"

MessageHandler = Callable[[IncomingMessage], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


class TransportErrorKind(str, Enum):
    """What part of the transport failed."""

    SEND = "send"  # Messages app not running or osascript failed
    DATABASE = "database"  # chat.db missing or unreadable
    CLOSED = "closed"  # used after close()


class TransportError(Exception):
    """Messaging transport failure."""

    def __init__(self, kind: TransportErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


def escape_applescript(value: str) -> str:
    """Escape a value for use inside an AppleScript string literal."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def decode_attributed_body(blob: bytes | None) -> str | None:
    """
    Extract the plain text from a ``message.attributedBody`` typedstream.

    Newer macOS releases leave ``message.text`` NULL and keep the body only
    in this archived NSAttributedString. The string bytes follow the
    ``NSString`` class name, a 5-byte type header and a length prefix
    (one byte, or 0x81/0x82 followed by a 2- or 4-byte little-endian length).

    Returns None if the blob does not contain a readable string.
    """
    if not blob:
        return None

    start = blob.find(NSSTRING_MARKER)
    if start == -1:
        return None

    data = blob[start + len(NSSTRING_MARKER) + 5 :]
    if not data:
        return None

    if data[0] == 0x81:
        length, offset = int.from_bytes(data[1:3], "little"), 3
    elif data[0] == 0x82:
        length, offset = int.from_bytes(data[1:5], "little"), 5
    else:
        length, offset = data[0], 1

    payload = data[offset : offset + length]
    if len(payload) != length:
        return None
    return payload.decode("utf-8", errors="replace")


class MessagingTransport(ABC):
    """Base class for chat transports.

    Subclasses provide polling and sending; the watch loop lives here.
    """

    def __init__(self, poll_interval_seconds: float = 3.0):
        self.poll_interval = poll_interval_seconds
        self._stop = asyncio.Event()
        self._watching = False

    @abstractmethod
    async def fetch_new_messages(self) -> list[IncomingMessage]:
        """Return messages that arrived since the last call."""
        pass

    @abstractmethod
    async def get_unread_messages(self) -> list[UnreadGroup]:
        """Return unread messages grouped by sender."""
        pass

    @abstractmethod
    async def send(self, recipient: str, text: str) -> None:
        """Send a text message."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release all resources. Safe to call more than once."""
        pass

    @property
    def is_watching(self) -> bool:
        return self._watching

    async def watch(self, on_error: ErrorHandler | None = None) -> AsyncIterator[IncomingMessage]:
        """
        Poll for new messages until ``stop_watching`` is called.

        Poll errors are handed to ``on_error`` (or logged) and polling
        continues.
        """
        self._stop.clear()
        self._watching = True
        logger.info(f"Watching for messages every {self.poll_interval}s")

        try:
            while not self._stop.is_set():
                try:
                    messages = await self.fetch_new_messages()
                except Exception as e:
                    if on_error is not None:
                        on_error(e)
                    else:
                        logger.exception("Error polling for messages")
                    messages = []

                for message in messages:
                    if self._stop.is_set():
                        break
                    yield message

                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
        finally:
            self._watching = False

    async def start_watching(
        self,
        on_new_message: MessageHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        """Callback-style watch loop: await ``on_new_message`` for each message."""
        async for message in self.watch(on_error):
            try:
                await on_new_message(message)
            except Exception as e:
                if on_error is not None:
                    on_error(e)
                else:
                    logger.exception("Error in message handler")

    def stop_watching(self) -> None:
        """Ask the watch loop to exit after the current poll."""
        self._stop.set()


class IMessageTransport(MessagingTransport):
    """
    Transport backed by the macOS Messages app.

    Call ``open()`` before use; it fails with a DATABASE error if chat.db
    cannot be read.
    """

    def __init__(self, config: WatcherConfig):
        super().__init__(config.poll_interval_seconds)
        self.config = config
        self.db_path = config.resolved_chat_db()
        self._last_rowid = 0
        self._services: dict[str, str] = {}  # sender -> service of their last message
        self._closed = False
        self._opened = False

        if config.debug:
            logger.setLevel(logging.DEBUG)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    def _check_open(self) -> None:
        if self._closed:
            raise TransportError(TransportErrorKind.CLOSED, "transport is closed")

    async def open(self) -> None:
        """Verify chat.db is readable and skip existing history."""
        self._check_open()
        if not self.db_path.exists():
            raise TransportError(
                TransportErrorKind.DATABASE, f"Messages database not found: {self.db_path}"
            )
        try:
            self._last_rowid = await asyncio.to_thread(self._max_rowid)
        except sqlite3.Error as e:
            raise TransportError(
                TransportErrorKind.DATABASE, f"Cannot read {self.db_path}: {e}"
            ) from e
        self._opened = True
        logger.info(f"Opened {self.db_path} at message {self._last_rowid}")

    def _max_rowid(self) -> int:
        conn = self._connect()
        try:
            row = conn.execute("SELECT COALESCE(MAX(ROWID), 0) FROM message").fetchone()
            return int(row[0])
        finally:
            conn.close()

    def _load_attachments(
        self, conn: sqlite3.Connection, message_ids: list[int]
    ) -> dict[int, list[Attachment]]:
        if not message_ids:
            return {}

        placeholders = ",".join("?" * len(message_ids))
        cursor = conn.execute(
            f"""
            SELECT j.message_id, a.filename, a.mime_type, a.transfer_name
            FROM message_attachment_join j
            JOIN attachment a ON a.ROWID = j.attachment_id
            WHERE j.message_id IN ({placeholders})
            ORDER BY j.message_id, a.ROWID
            """,
            message_ids,
        )

        attachments: dict[int, list[Attachment]] = {}
        for row in cursor.fetchall():
            if not row["filename"]:
                continue
            path = Path(row["filename"]).expanduser()
            attachments.setdefault(row["message_id"], []).append(
                Attachment(
                    path=path,
                    filename=row["transfer_name"] or path.name,
                    mime_type=row["mime_type"],
                )
            )
        return attachments

    def _query_messages(self, where: str, params: tuple) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                SELECT m.ROWID AS message_id, m.text, m.attributedBody AS attributed_body,
                       m.is_from_me, m.is_read, h.id AS sender, h.service
                FROM message m
                LEFT JOIN handle h ON m.handle_id = h.ROWID
                WHERE {where}
                ORDER BY m.ROWID ASC
                """,
                params,
            )
            return cursor.fetchall()
        finally:
            conn.close()

    def _build_messages(self, rows: list[sqlite3.Row]) -> list[IncomingMessage]:
        conn = self._connect()
        try:
            attachments = self._load_attachments(conn, [r["message_id"] for r in rows])
        finally:
            conn.close()

        messages = []
        for row in rows:
            text = row["text"]
            if text is None:
                text = decode_attributed_body(row["attributed_body"])
            messages.append(
                IncomingMessage(
                    message_id=row["message_id"],
                    sender=row["sender"] or "",
                    text=text,
                    attachments=tuple(attachments.get(row["message_id"], [])),
                    is_from_me=bool(row["is_from_me"]),
                )
            )
        return messages

    def _poll(self) -> list[IncomingMessage]:
        rows = self._query_messages("m.ROWID > ?", (self._last_rowid,))
        if not rows:
            return []

        self._last_rowid = max(r["message_id"] for r in rows)

        wanted = []
        for row in rows:
            if self.config.exclude_own_messages and row["is_from_me"]:
                continue
            if self.config.unread_only and row["is_read"]:
                continue
            if not row["sender"]:
                logger.debug(f"Skipping message {row['message_id']} with no sender")
                continue
            if row["service"]:
                self._services[row["sender"]] = row["service"]
            wanted.append(row)

        return self._build_messages(wanted)

    async def fetch_new_messages(self) -> list[IncomingMessage]:
        self._check_open()
        if not self._opened:
            await self.open()
        try:
            messages = await asyncio.to_thread(self._poll)
        except sqlite3.Error as e:
            raise TransportError(TransportErrorKind.DATABASE, f"Polling failed: {e}") from e

        if messages:
            logger.debug(f"Fetched {len(messages)} new message(s)")
        return messages

    def _unread(self) -> list[UnreadGroup]:
        rows = self._query_messages("m.is_read = 0 AND m.is_from_me = 0", ())
        groups: dict[str, UnreadGroup] = {}
        for message in self._build_messages([r for r in rows if r["sender"]]):
            groups.setdefault(message.sender, UnreadGroup(sender=message.sender))
            groups[message.sender].messages.append(message)
        return list(groups.values())

    async def get_unread_messages(self) -> list[UnreadGroup]:
        self._check_open()
        try:
            return await asyncio.to_thread(self._unread)
        except sqlite3.Error as e:
            raise TransportError(TransportErrorKind.DATABASE, f"Query failed: {e}") from e

    async def _run_osascript(self, script: str) -> tuple[int, str, str]:
        """Run an AppleScript snippet, returning (exit code, stdout, stderr)."""
        try:
            proc = await asyncio.create_subprocess_exec(
                "osascript",
                "-e",
                script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TransportError(TransportErrorKind.SEND, "osascript is not available") from e

        stdout, stderr = await proc.communicate()
        return proc.returncode, stdout.decode().strip(), stderr.decode().strip()

    async def is_messages_running(self) -> bool:
        code, out, _ = await self._run_osascript(IS_RUNNING_SCRIPT)
        return code == 0 and out == "true"

    async def send(self, recipient: str, text: str) -> None:
        self._check_open()

        if not await self.is_messages_running():
            raise TransportError(TransportErrorKind.SEND, "Messages app is not running")

        service = self._services.get(recipient, DEFAULT_SERVICE)
        script = SEND_SCRIPT.format(
            service=SERVICE_TYPES.get(service, DEFAULT_SERVICE),
            recipient=escape_applescript(recipient),
            text=escape_applescript(text),
        )
        code, _, err = await self._run_osascript(script)
        if code != 0:
            raise TransportError(TransportErrorKind.SEND, f"osascript failed: {err}")

        logger.debug(f"Sent {len(text)} chars to {recipient}")

    async def close(self) -> None:
        if self._closed:
            return
        self.stop_watching()
        self._closed = True
        logger.info("Transport closed")
