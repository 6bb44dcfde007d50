"""
Record model for Google Voice takeout archives.

One Conversation is produced per exported HTML document. Chats carry an
ordered list of Messages; calls carry a duration; voicemails carry a
duration and a transcript. Contacts are the (name, phone number) identities
seen across participants and senders, and Groups are the reconciled threads
keyed by an exact set of contact ids.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class ConversationType(str, Enum):
    """Kinds of record found in a Google Voice export."""

    CHAT = "chat"
    VOICEMAIL = "voicemail"
    MISSED_CALL = "missed_call"
    RECEIVED_CALL = "received_call"
    PLACED_CALL = "placed_call"

    @property
    def is_call(self) -> bool:
        return self is not ConversationType.CHAT


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as RFC 3339, or None when unset."""
    if value is None:
        return None
    return value.isoformat()


@dataclass
class Message:
    """A single chat message."""
    timestamp: Optional[datetime] = None
    sender: str = ""
    sender_number: str = ""
    content: str = ""
    images: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'timestamp': format_timestamp(self.timestamp),
            'sender': self.sender,
            'sender_number': self.sender_number,
            'content': self.content,
        }
        if self.images:
            data['images'] = list(self.images)
        return data


@dataclass
class Conversation:
    """
    One conversation extracted from one source document.

    ``participants`` maps display name to phone number; an empty number is a
    legitimate value when the markup carries no ``tel:`` link.
    """
    type: Optional[ConversationType] = None
    participants: Dict[str, str] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    duration: str = ""
    transcript: str = ""
    messages: List[Message] = field(default_factory=list)
    source_file: str = ""
    id: Optional[int] = None

    def validate(self) -> List[str]:
        """
        Check the type/field-shape invariant.

        Returns:
            List of problems found (empty when the record is consistent)
        """
        problems = []
        if self.type is None:
            problems.append("conversation type is missing")
            return problems

        if self.type is ConversationType.CHAT:
            if self.duration:
                problems.append("chat conversation carries a duration")
            if self.transcript:
                problems.append("chat conversation carries a transcript")
        else:
            if self.messages:
                problems.append(f"{self.type.value} conversation carries messages")
            if self.transcript and self.type is not ConversationType.VOICEMAIL:
                problems.append(f"{self.type.value} conversation carries a transcript")

        for index, message in enumerate(self.messages):
            if not message.sender:
                problems.append(f"message {index} has no sender")

        return problems

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready mapping, omitting fields that do not apply."""
        data = {
            'type': self.type.value if self.type else "",
            'participants': dict(self.participants),
            'timestamp': format_timestamp(self.timestamp),
        }
        if self.duration:
            data['duration'] = self.duration
        if self.messages:
            data['messages'] = [message.to_dict() for message in self.messages]
        if self.transcript:
            data['transcript'] = self.transcript
        data['source_file'] = self.source_file
        return data


@dataclass
class Contact:
    """A (name, phone number) identity. Empty phone numbers are distinct values."""
    name: str
    phone_number: str = ""
    id: Optional[int] = None

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.phone_number)


@dataclass
class GroupMessage:
    """A message as seen from a reconciled group, with its resolved sender."""
    id: Optional[int]
    conversation_id: Optional[int]
    timestamp: Optional[datetime]
    sender_contact_id: Optional[int]
    sender_name: str
    sender_number: str
    content: str
    images: List[str] = field(default_factory=list)


@dataclass
class Group:
    """A reconciled thread identified by an exact set of contact ids."""
    key: str
    participants: List[Contact] = field(default_factory=list)
    messages: List[GroupMessage] = field(default_factory=list)
    type: Optional[ConversationType] = None
    timestamp: Optional[datetime] = None
    last_conversation_id: Optional[int] = None
    conversation_ids: List[int] = field(default_factory=list)

    @property
    def contact_ids(self) -> List[int]:
        return parse_group_key(self.key)


def group_key(contact_ids: Iterable[int]) -> str:
    """
    Build the canonical key for a set of contact ids.

    Example:
        >>> group_key([12, 3, 7, 3])
        '3,7,12'
    """
    return ",".join(str(cid) for cid in sorted(set(contact_ids)))


def parse_group_key(key: str) -> List[int]:
    """
    Parse a comma-separated group key into contact ids.

    Raises:
        ValueError: If the key is empty or any part is not an integer
    """
    parts = [part.strip() for part in key.split(",")]
    if not key.strip() or any(not part for part in parts):
        raise ValueError(f"Invalid group key: {key!r}")
    try:
        return [int(part) for part in parts]
    except ValueError:
        raise ValueError(f"Invalid group key: {key!r}") from None
