"""
Markup extractor for Google Voice takeout documents.

Each exported HTML file describes one conversation using microformat class
annotations (hCard / hCalendar style). The extractor walks the parsed tree
once, dispatching on (tag, class) pairs through declarative handler tables,
and turns what it finds into fragments. The fragments are then assembled
into a single Conversation.

Document shapes:
    <div class="hChatLog hfeed">      text / MMS / group chat log
        <div class="message">         one message
            <abbr class="dt" title="2022-06-30T18:06:39.894-07:00">
            <cite class="sender vcard"><a class="tel" href="tel:+2222">
                <abbr class="fn">Me</abbr></a></cite>
            <q>text</q> <img src="attachment reference">
    <div class="haudio">              call or voicemail record
        <div class="contributor vcard"> ... <span class="fn">Name</span>
        <abbr class="published" title="RFC 3339">
        <abbr class="duration">(00:00:18)</abbr>
        <span class="full-text">voicemail transcript</span>
    <title>Me to Tony Smehrik</title> fallback participant names (chats, and
                                      calls without a contributor block)

Precedence: a call/voicemail record overrides a chat log in the same
document; among several records of one kind the first in document order
is used.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from bs4 import BeautifulSoup, ParserRejectedMarkup, Tag
from dateutil.parser import isoparse

from .models import Conversation, ConversationType, Message

logger = logging.getLogger(__name__)

TEL_SCHEME = "tel:"
TITLE_SEPARATOR = " to "
RFC3339_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

# Checked in this order within a single text node.
CALL_MARKERS: Tuple[Tuple[str, ConversationType], ...] = (
    ("Voicemail", ConversationType.VOICEMAIL),
    ("Placed call", ConversationType.PLACED_CALL),
    ("Received call", ConversationType.RECEIVED_CALL),
    ("Missed call", ConversationType.MISSED_CALL),
)


class ExtractionError(Exception):
    """Raised when a document cannot be turned into a Conversation."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.message = message
        self.path = path
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.path:
            return f"{self.message} (File: {self.path})"
        return self.message


# ====================================================================
# FRAGMENTS
# ====================================================================

@dataclass
class TitleFragment:
    """Names taken from a "<sender> to <recipient>" document title."""
    names: Tuple[str, ...]


@dataclass
class ChatLogFragment:
    participants: Dict[str, str]
    messages: List[Message]


@dataclass
class CallRecordFragment:
    type: Optional[ConversationType]
    participants: Dict[str, str]
    timestamp: Optional[datetime] = None
    duration: str = ""
    transcript: str = ""


Fragment = Union[TitleFragment, ChatLogFragment, CallRecordFragment]
Handler = Callable[[Tag, str], object]
HandlerTable = Dict[Tuple[Optional[str], Optional[str]], Handler]


# ====================================================================
# TREE HELPERS
# ====================================================================

def class_value(node: Tag) -> str:
    """Return the full class attribute of a node as one space-joined string."""
    value = node.get("class")
    if value is None:
        return ""
    if isinstance(value, str):
        return " ".join(value.split())
    return " ".join(value)


def node_text(node: Tag) -> str:
    """Concatenate all descendant text of a node, trimmed."""
    return node.get_text().strip()


def element_children(node: Tag) -> List[Tag]:
    return [child for child in node.children if isinstance(child, Tag)]


def lookup_handler(table: HandlerTable, node: Tag) -> Optional[Handler]:
    """Find the handler for a node: exact (tag, class), then tag only, then class only."""
    css_class = class_value(node)
    for key in ((node.name, css_class), (node.name, None), (None, css_class)):
        handler = table.get(key)
        if handler is not None:
            return handler
    return None


def walk(root: Tag, table: HandlerTable, source: str,
         descend_handled: bool = False) -> Iterator[object]:
    """
    Depth-first, document-order walk below ``root`` applying ``table``.

    Args:
        root: Node whose descendants are visited (root itself is not)
        table: Mapping of (tag, class) to handler; None acts as a wildcard
        source: Document name used in log messages
        descend_handled: Also visit the children of nodes that matched

    Yields:
        Non-None handler results, in document order
    """
    stack = list(reversed(element_children(root)))
    while stack:
        node = stack.pop()
        handler = lookup_handler(table, node)
        if handler is not None:
            result = handler(node, source)
            if result is not None:
                yield result
            if not descend_handled:
                continue
        stack.extend(reversed(element_children(node)))


def parse_rfc3339(value: Optional[str]) -> datetime:
    """
    Parse an RFC 3339 timestamp.

    Raises:
        ValueError: If the value is missing, malformed or has no UTC offset
    """
    if not value:
        raise ValueError("no title attribute found for timestamp")
    value = value.strip()
    if not RFC3339_PATTERN.match(value):
        raise ValueError(f"not an RFC 3339 timestamp with UTC offset: {value!r}")
    return isoparse(value)


def timestamp_from_title(node: Tag, source: str) -> Optional[datetime]:
    """Read a node's ``title`` attribute as a timestamp, logging failures."""
    try:
        return parse_rfc3339(node.get("title"))
    except (ValueError, OverflowError) as e:
        logger.warning(f"Could not parse timestamp in {source}: {e}")
        return None


def phone_number_for(node: Tag, boundary: Tag) -> str:
    """Number from the nearest ``tel:`` link at or above ``node``, up to ``boundary``."""
    current = node
    while isinstance(current, Tag):
        href = current.get("href")
        if isinstance(href, str) and href.startswith(TEL_SCHEME):
            return href[len(TEL_SCHEME):]
        if current is boundary:
            break
        current = current.parent
    return ""


def merge_participant(participants: Dict[str, str], name: str, number: str) -> None:
    """Add a participant; a known number is never replaced by an empty one."""
    if name not in participants or (number and not participants[name]):
        participants[name] = number


# ====================================================================
# PARTICIPANTS
# ====================================================================

def collect_participants(block: Tag, source: str) -> Dict[str, str]:
    """Collect name -> number for every ``fn`` marker inside ``block``."""
    participants: Dict[str, str] = {}

    def handle_fn(node: Tag, _source: str) -> Tuple[str, str]:
        return node_text(node), phone_number_for(node, block)

    for name, number in walk(block, {(None, "fn"): handle_fn}, source):
        if name:
            merge_participant(participants, name, number)
    return participants


# ====================================================================
# MESSAGES
# ====================================================================

def _sender_name(node: Tag, _source: str) -> Tuple[str, str]:
    return ("name", node_text(node))


def _sender_number(node: Tag, _source: str) -> Optional[Tuple[str, str]]:
    href = node.get("href")
    if isinstance(href, str) and href.startswith(TEL_SCHEME):
        return ("number", href[len(TEL_SCHEME):])
    return None


SENDER_HANDLERS: HandlerTable = {
    ("abbr", "fn"): _sender_name,
    ("span", "fn"): _sender_name,
    ("a", None): _sender_number,
}


def parse_sender(cite: Tag, source: str) -> Tuple[str, str]:
    """Return (name, number) from a ``cite`` sender block."""
    found: Dict[str, str] = {}
    for key, value in walk(cite, SENDER_HANDLERS, source, descend_handled=True):
        found.setdefault(key, value)
    return found.get("name", ""), found.get("number", "")


def _message_timestamp(node: Tag, source: str) -> Tuple[str, Optional[datetime]]:
    return ("timestamp", timestamp_from_title(node, source))


def _message_sender(node: Tag, source: str) -> Tuple[str, Tuple[str, str]]:
    return ("sender", parse_sender(node, source))


def _message_content(node: Tag, _source: str) -> Tuple[str, str]:
    return ("content", node_text(node))


def _message_image(node: Tag, _source: str) -> Optional[Tuple[str, str]]:
    src = node.get("src")
    if src is None:
        return None
    return ("image", src)


MESSAGE_HANDLERS: HandlerTable = {
    ("abbr", "dt"): _message_timestamp,
    ("cite", None): _message_sender,
    ("q", None): _message_content,
    ("img", None): _message_image,
}


def parse_message(node: Tag, source: str) -> Message:
    """Build a Message from one ``div.message`` node."""
    scalars: Dict[str, object] = {}
    images: List[str] = []
    for key, value in walk(node, MESSAGE_HANDLERS, source, descend_handled=True):
        if key == "image":
            images.append(value)
        else:
            scalars.setdefault(key, value)

    sender, sender_number = scalars.get("sender", ("", ""))
    message = Message(
        timestamp=scalars.get("timestamp"),
        sender=sender,
        sender_number=sender_number,
        content=scalars.get("content", ""),
        images=images,
    )
    if not message.sender:
        logger.warning(f"Message without sender in {source}")
    return message


def collect_messages(block: Tag, source: str) -> List[Message]:
    return list(walk(block, {("div", "message"): parse_message}, source))


# ====================================================================
# DOCUMENT-LEVEL HANDLERS
# ====================================================================

def _handle_title(node: Tag, _source: str) -> Optional[TitleFragment]:
    title = node_text(node).replace("\n", " ")
    parts = title.split(TITLE_SEPARATOR)
    if len(parts) != 2:
        return None
    names = tuple(part.strip() for part in parts if part.strip())
    return TitleFragment(names=names) if names else None


def _handle_chat_log(node: Tag, source: str) -> ChatLogFragment:
    return ChatLogFragment(
        participants=collect_participants(node, source),
        messages=collect_messages(node, source),
    )


def classify_call(node: Tag) -> Optional[ConversationType]:
    """Classify a call record by the first text node carrying a marker."""
    for text in node.strings:
        text = text.strip()
        for marker, conversation_type in CALL_MARKERS:
            if marker in text:
                return conversation_type
    return None


def _call_participants(node: Tag, source: str) -> Tuple[str, Dict[str, str]]:
    return ("participants", collect_participants(node, source))


def _call_transcript(node: Tag, _source: str) -> Tuple[str, str]:
    return ("transcript", node_text(node))


def _call_timestamp(node: Tag, source: str) -> Tuple[str, Optional[datetime]]:
    return ("timestamp", timestamp_from_title(node, source))


def _call_duration(node: Tag, _source: str) -> Tuple[str, str]:
    return ("duration", node_text(node).strip("()"))


CALL_FIELD_HANDLERS: HandlerTable = {
    ("div", "contributor vcard"): _call_participants,
    ("span", "full-text"): _call_transcript,
    ("abbr", "published"): _call_timestamp,
    ("abbr", "duration"): _call_duration,
}


def _handle_call_record(node: Tag, source: str) -> CallRecordFragment:
    participants: Dict[str, str] = {}
    scalars: Dict[str, object] = {}
    for key, value in walk(node, CALL_FIELD_HANDLERS, source, descend_handled=True):
        if key == "participants":
            for name, number in value.items():
                merge_participant(participants, name, number)
        else:
            scalars.setdefault(key, value)

    return CallRecordFragment(
        type=classify_call(node),
        participants=participants,
        timestamp=scalars.get("timestamp"),
        duration=scalars.get("duration", ""),
        transcript=scalars.get("transcript", ""),
    )


DOCUMENT_HANDLERS: HandlerTable = {
    ("title", None): _handle_title,
    ("div", "hChatLog hfeed"): _handle_chat_log,
    ("div", "haudio"): _handle_call_record,
}


# ====================================================================
# ASSEMBLY
# ====================================================================

def title_names(titles: List[TitleFragment]) -> Iterator[str]:
    for title in titles:
        yield from title.names


def assemble(fragments: List[Fragment], source: str = "") -> Conversation:
    """
    Fold document fragments into one Conversation.

    A Conversation with ``type`` None means no recognized record was found.
    """
    titles = [f for f in fragments if isinstance(f, TitleFragment)]
    chats = [f for f in fragments if isinstance(f, ChatLogFragment)]
    calls = [f for f in fragments if isinstance(f, CallRecordFragment)]

    if calls:
        if len(calls) > 1 or chats:
            logger.warning(
                f"{source}: {len(calls)} call record(s) and {len(chats)} chat log(s) found; "
                "using the first call record"
            )
        call = calls[0]
        transcript = call.transcript if call.type is ConversationType.VOICEMAIL else ""
        participants = dict(call.participants)
        if not participants:
            # "Placed call to X" yields the marker as a name
            for name in title_names(titles):
                if not any(name.startswith(marker) for marker, _ in CALL_MARKERS):
                    participants.setdefault(name, "")
        return Conversation(
            type=call.type,
            participants=participants,
            timestamp=call.timestamp,
            duration=call.duration,
            transcript=transcript,
            source_file=source,
        )

    if chats:
        if len(chats) > 1:
            logger.warning(f"{source}: {len(chats)} chat logs found; using the first")
        chat = chats[0]
        participants = dict(chat.participants)
        for name in title_names(titles):
            participants.setdefault(name, "")
        timestamps = [m.timestamp for m in chat.messages if m.timestamp is not None]
        return Conversation(
            type=ConversationType.CHAT,
            participants=participants,
            timestamp=min(timestamps) if timestamps else None,
            messages=list(chat.messages),
            source_file=source,
        )

    return Conversation(source_file=source)


def extract_fragments(soup: Tag, source: str = "") -> List[Fragment]:
    return list(walk(soup, DOCUMENT_HANDLERS, source))


def extract_conversation(markup, source_name: Optional[str] = None) -> Conversation:
    """
    Extract one Conversation from a takeout HTML document.

    Args:
        markup: HTML as str, bytes or an open file
        source_name: Name recorded as the conversation's source file

    Returns:
        The extracted Conversation

    Raises:
        ExtractionError: If the markup is rejected by the parser or no
            recognized conversation record is present

    Example:
        conv = extract_conversation(Path("Calls/Dwigt - Missed - 2009.html").read_bytes())
        print(conv.type, conv.participants)
    """
    source = source_name or ""
    try:
        soup = BeautifulSoup(markup, 'html.parser')
    except ParserRejectedMarkup as e:
        raise ExtractionError(f"Failed to parse markup: {e}", source_name) from e

    conversation = assemble(extract_fragments(soup, source), source)
    if conversation.type is None:
        raise ExtractionError("No recognized conversation record found", source_name)
    return conversation


def extract_file(file_path: Path, root: Optional[Path] = None) -> Conversation:
    """
    Extract a Conversation from an HTML file.

    ``source_file`` is the path relative to ``root`` when given, otherwise the
    bare file name.

    Raises:
        ExtractionError: If the file cannot be read or holds no recognized record
    """
    file_path = Path(file_path)
    if root is not None:
        try:
            source = file_path.relative_to(root).as_posix()
        except ValueError:
            source = file_path.name
    else:
        source = file_path.name

    try:
        markup = file_path.read_bytes()
    except OSError as e:
        raise ExtractionError(f"Failed to read file: {e}", source) from e

    return extract_conversation(markup, source)
