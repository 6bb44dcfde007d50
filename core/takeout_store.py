"""
Relational storage for extracted conversations.

Conversations are written one transaction at a time: a conversation, its
participants, messages, images and captured media either all persist or none
do. Contacts are shared rows keyed by the unique (name, phone_number) pair.

Timestamps are stored as UTC RFC 3339 strings with microsecond precision so
that ordering by the column is chronological.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from dateutil.parser import isoparse

from .models import Contact, Conversation, ConversationType, GroupMessage

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under SQLite's bound-parameter limit.
QUERY_CHUNK_SIZE = 500
PREVIEW_MESSAGE_COUNT = 5

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS contact (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        phone_number TEXT NOT NULL DEFAULT '',
        UNIQUE (name, phone_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL,
        timestamp TEXT,
        duration TEXT,
        transcript TEXT,
        source_file TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS participant (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id INTEGER NOT NULL,
        contact_id INTEGER NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversation (id),
        FOREIGN KEY (contact_id) REFERENCES contact (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id INTEGER NOT NULL,
        timestamp TEXT,
        sender_contact_id INTEGER,
        content TEXT,
        FOREIGN KEY (conversation_id) REFERENCES conversation (id),
        FOREIGN KEY (sender_contact_id) REFERENCES contact (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS image (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        message_id INTEGER NOT NULL,
        image_url TEXT,
        FOREIGN KEY (message_id) REFERENCES message (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS media_file (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        image_id INTEGER NOT NULL,
        file_name TEXT,
        content BLOB,
        FOREIGN KEY (image_id) REFERENCES image (id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_participant_conversation ON participant (conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_participant_contact ON participant (contact_id)",
    "CREATE INDEX IF NOT EXISTS idx_message_conversation ON message (conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_image_message ON image (message_id)",
    "CREATE INDEX IF NOT EXISTS idx_conversation_timestamp ON conversation (timestamp)",
)

SEARCH_CONDITION = """
    c.transcript LIKE :pattern
    OR c.id IN (SELECT m.conversation_id FROM message m WHERE m.content LIKE :pattern)
    OR c.id IN (
        SELECT p.conversation_id FROM participant p
        JOIN contact ct ON ct.id = p.contact_id
        WHERE ct.name LIKE :pattern OR ct.phone_number LIKE :pattern
    )
"""


class StorageError(Exception):
    """Raised when a conversation cannot be written; the transaction is rolled back."""
    pass


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return isoparse(value)


def chunked(values: Sequence[int], size: int = QUERY_CHUNK_SIZE) -> Iterator[Sequence[int]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class ConversationStore:
    """
    SQLite-backed store for conversations, contacts and messages.

    Example:
        with ConversationStore(Path("conversations.db")) as store:
            conversation_id = store.save_conversation(conversation)
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.execute("PRAGMA journal_mode = WAL")
        self.init_database()
        logger.debug(f"Opened conversation store: {db_path}")

    def init_database(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self.conn:
            for statement in SCHEMA:
                self.conn.execute(statement)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "ConversationStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ====================================================================
    # WRITE SIDE
    # ====================================================================

    def _contact_id(self, name: str, phone_number: str) -> int:
        self.conn.execute(
            "INSERT OR IGNORE INTO contact (name, phone_number) VALUES (?, ?)",
            (name, phone_number or ""),
        )
        row = self.conn.execute(
            "SELECT id FROM contact WHERE name = ? AND phone_number = ?",
            (name, phone_number or ""),
        ).fetchone()
        return row[0]

    def save_conversation(self, conversation: Conversation, resolver=None) -> int:
        """
        Persist one conversation in a single transaction.

        Args:
            conversation: Extracted conversation (``type`` must be set)
            resolver: Optional AttachmentResolver; when given, the bytes of
                each resolvable image are stored in ``media_file``

        Returns:
            The new conversation id

        Raises:
            StorageError: If any insert fails; nothing from this conversation
                is left in the database
        """
        if conversation.type is None:
            raise StorageError(f"Refusing to store untyped conversation from {conversation.source_file}")

        try:
            with self.conn:
                cursor = self.conn.execute(
                    "INSERT INTO conversation (type, timestamp, duration, transcript, source_file) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        conversation.type.value,
                        to_db_timestamp(conversation.timestamp),
                        conversation.duration,
                        conversation.transcript,
                        conversation.source_file,
                    ),
                )
                conversation_id = cursor.lastrowid

                for name, number in conversation.participants.items():
                    contact_id = self._contact_id(name, number)
                    self.conn.execute(
                        "INSERT INTO participant (conversation_id, contact_id) VALUES (?, ?)",
                        (conversation_id, contact_id),
                    )

                for message in conversation.messages:
                    sender_id = None
                    if message.sender:
                        sender_id = self._contact_id(message.sender, message.sender_number)
                    cursor = self.conn.execute(
                        "INSERT INTO message (conversation_id, timestamp, sender_contact_id, content) "
                        "VALUES (?, ?, ?, ?)",
                        (conversation_id, to_db_timestamp(message.timestamp), sender_id, message.content),
                    )
                    message_id = cursor.lastrowid

                    for image_url in message.images:
                        cursor = self.conn.execute(
                            "INSERT INTO image (message_id, image_url) VALUES (?, ?)",
                            (message_id, image_url),
                        )
                        if resolver is not None:
                            self._save_media(cursor.lastrowid, image_url, resolver)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store conversation {conversation.source_file}: {e}") from e

        return conversation_id

    def _save_media(self, image_id: int, image_url: str, resolver) -> None:
        media = resolver.read_media(image_url)
        if media is None:
            logger.debug(f"Attachment not captured: {image_url}")
            return
        file_name, content = media
        self.conn.execute(
            "INSERT INTO media_file (image_id, file_name, content) VALUES (?, ?, ?)",
            (image_id, file_name, sqlite3.Binary(content)),
        )

    # ====================================================================
    # READ SIDE
    # ====================================================================

    def iter_participant_rows(self) -> Iterator[Tuple[int, int]]:
        """Yield (conversation_id, contact_id), ordered by conversation id."""
        cursor = self.conn.execute(
            "SELECT conversation_id, contact_id FROM participant ORDER BY conversation_id, contact_id"
        )
        for conversation_id, contact_id in cursor:
            yield conversation_id, contact_id

    def iter_group_rows(self) -> Iterator[Tuple[int, Optional[ConversationType], Optional[datetime], Contact]]:
        """
        Yield one row per (conversation, participant), newest conversation first.

        Rows of one conversation are contiguous.
        """
        cursor = self.conn.execute(
            """
            SELECT conversation.id, conversation.type, conversation.timestamp,
                   contact.id, contact.name, contact.phone_number
            FROM conversation
            JOIN participant ON participant.conversation_id = conversation.id
            JOIN contact ON participant.contact_id = contact.id
            ORDER BY conversation.timestamp DESC, conversation.id DESC, contact.id
            """
        )
        for conv_id, conv_type, timestamp, contact_id, name, phone_number in cursor:
            yield (
                conv_id,
                ConversationType(conv_type) if conv_type else None,
                from_db_timestamp(timestamp),
                Contact(name=name, phone_number=phone_number, id=contact_id),
            )

    def fetch_messages(self, conversation_ids: Iterable[int], newest_first: bool = True) -> List[GroupMessage]:
        """
        Load messages with resolved senders and images for the given conversations.

        Args:
            conversation_ids: Conversations whose messages are wanted
            newest_first: Order by timestamp descending (ascending otherwise);
                messages without a timestamp sort last either way

        Returns:
            List of GroupMessage
        """
        ids = sorted(set(conversation_ids))
        messages: List[GroupMessage] = []
        raw_timestamps: Dict[int, str] = {}

        for chunk in chunked(ids):
            placeholders = ",".join("?" for _ in chunk)
            cursor = self.conn.execute(
                f"""
                SELECT m.id, m.conversation_id, m.timestamp, m.sender_contact_id,
                       c.name, c.phone_number, m.content
                FROM message m
                LEFT JOIN contact c ON m.sender_contact_id = c.id
                WHERE m.conversation_id IN ({placeholders})
                """,
                list(chunk),
            )
            for msg_id, conv_id, timestamp, sender_id, name, number, content in cursor:
                raw_timestamps[msg_id] = timestamp or ""
                messages.append(GroupMessage(
                    id=msg_id,
                    conversation_id=conv_id,
                    timestamp=from_db_timestamp(timestamp),
                    sender_contact_id=sender_id,
                    sender_name=name or "",
                    sender_number=number or "",
                    content=content or "",
                ))

        images = self._fetch_images([m.id for m in messages])
        for message in messages:
            message.images = images.get(message.id, [])

        if newest_first:
            messages.sort(key=lambda m: (raw_timestamps[m.id], m.id), reverse=True)
        else:
            messages.sort(key=lambda m: (raw_timestamps[m.id] == "", raw_timestamps[m.id], m.id))
        return messages

    def _fetch_images(self, message_ids: List[int]) -> Dict[int, List[str]]:
        images: Dict[int, List[str]] = {}
        for chunk in chunked(message_ids):
            placeholders = ",".join("?" for _ in chunk)
            cursor = self.conn.execute(
                f"SELECT message_id, image_url FROM image WHERE message_id IN ({placeholders}) ORDER BY id",
                list(chunk),
            )
            for message_id, image_url in cursor:
                images.setdefault(message_id, []).append(image_url)
        return images

    def get_contacts(self, contact_ids: Iterable[int]) -> List[Contact]:
        ids = sorted(set(contact_ids))
        contacts: List[Contact] = []
        for chunk in chunked(ids):
            placeholders = ",".join("?" for _ in chunk)
            cursor = self.conn.execute(
                f"SELECT id, name, phone_number FROM contact WHERE id IN ({placeholders}) ORDER BY id",
                list(chunk),
            )
            contacts.extend(Contact(name=name, phone_number=number, id=cid) for cid, name, number in cursor)
        return contacts

    def get_participants(self, conversation_id: int) -> List[Contact]:
        cursor = self.conn.execute(
            """
            SELECT c.id, c.name, c.phone_number
            FROM participant p
            JOIN contact c ON p.contact_id = c.id
            WHERE p.conversation_id = ?
            ORDER BY c.id
            """,
            (conversation_id,),
        )
        return [Contact(name=name, phone_number=number, id=cid) for cid, name, number in cursor]

    def _row_to_conversation(self, row) -> Conversation:
        conv_id, conv_type, timestamp, duration, transcript, source_file = row
        participants = {
            contact.name: contact.phone_number for contact in self.get_participants(conv_id)
        }
        return Conversation(
            type=ConversationType(conv_type),
            participants=participants,
            timestamp=from_db_timestamp(timestamp),
            duration=duration or "",
            transcript=transcript or "",
            source_file=source_file or "",
            id=conv_id,
        )

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        """Load a conversation header (participants included, messages not)."""
        row = self.conn.execute(
            "SELECT id, type, timestamp, duration, transcript, source_file FROM conversation WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_conversation(row)

    def search_conversations(self, term: str = "", limit: int = 50, offset: int = 0) -> List[Conversation]:
        """
        Find conversations whose transcript, message text or participant matches ``term``.

        Results are newest first; an empty term matches everything.
        """
        cursor = self.conn.execute(
            f"""
            SELECT c.id, c.type, c.timestamp, c.duration, c.transcript, c.source_file
            FROM conversation c
            WHERE {SEARCH_CONDITION}
            ORDER BY c.timestamp DESC, c.id DESC
            LIMIT :limit OFFSET :offset
            """,
            {'pattern': f"%{term}%", 'limit': limit, 'offset': offset},
        )
        return [self._row_to_conversation(row) for row in cursor.fetchall()]

    def count_conversations(self, term: str = "") -> int:
        row = self.conn.execute(
            f"SELECT COUNT(*) FROM conversation c WHERE {SEARCH_CONDITION}",
            {'pattern': f"%{term}%"},
        ).fetchone()
        return row[0]

    def conversation_preview(self, conversation: Conversation) -> str:
        """
        Short text preview: the transcript for voicemail, the first chat lines
        as "name: content" for chats, empty for calls.
        """
        if conversation.type is ConversationType.VOICEMAIL:
            return conversation.transcript
        if conversation.type is not ConversationType.CHAT or conversation.id is None:
            return ""

        cursor = self.conn.execute(
            """
            SELECT c.name, m.content
            FROM message m
            LEFT JOIN contact c ON m.sender_contact_id = c.id
            WHERE m.conversation_id = ?
            ORDER BY m.timestamp ASC, m.id ASC
            LIMIT ?
            """,
            (conversation.id, PREVIEW_MESSAGE_COUNT),
        )
        return "".join(f"{name or ''}: {content or ''}\n" for name, content in cursor)
