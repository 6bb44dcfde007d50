"""
Reconciliation of conversations into participant-set groups.

Google Voice splits one ongoing thread into several exported documents, so
the only stable merge key is the exact set of contacts involved. A Group is
one such set; its messages are the union of the messages of every
conversation whose participant set is exactly that set. Subsets and
supersets are different groups.

Two streaming reducers do the work:

- ExactSetMatcher consumes (conversation_id, contact_id) rows ordered by
  conversation id and reports the conversations whose contact set equals a
  target set.
- GroupFolder consumes conversation/participant rows ordered newest
  conversation first and folds them into one Group per distinct set; the
  first (newest) conversation of a set is its representative.

Both run over any row source exposing the read interface of
ConversationStore; MemoryConversationSource provides it for conversations
that were never persisted.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

from .models import Contact, Conversation, ConversationType, Group, GroupMessage, group_key

logger = logging.getLogger(__name__)


class MatchState(Enum):
    ACCUMULATING = "accumulating"
    CONFIRMED_VALID = "confirmed_valid"
    CONFIRMED_INVALID = "confirmed_invalid"


class ExactSetMatcher:
    """
    Finds conversations whose participant set equals a target set exactly.

    Per conversation the state starts at ACCUMULATING, becomes
    CONFIRMED_VALID once every target contact has been seen, and becomes
    CONFIRMED_INVALID (terminal) on any contact outside the target. The
    conversation is finalized when the conversation id changes.

    Example:
        matcher = ExactSetMatcher({1, 2})
        ids = matcher.match([(10, 1), (10, 2), (11, 1), (11, 2), (11, 3)])
        # ids == [10]
    """

    def __init__(self, target_ids: Iterable[int]):
        self.target: FrozenSet[int] = frozenset(target_ids)
        self.matches: List[int] = []
        self._current_id: Optional[int] = None
        self._seen: Set[int] = set()
        self._state = MatchState.ACCUMULATING

    @property
    def state(self) -> MatchState:
        return self._state

    def _transition(self, contact_id: int) -> MatchState:
        if self._state is MatchState.CONFIRMED_INVALID:
            return self._state
        if contact_id not in self.target:
            return MatchState.CONFIRMED_INVALID
        self._seen.add(contact_id)
        if len(self._seen) == len(self.target):
            return MatchState.CONFIRMED_VALID
        return MatchState.ACCUMULATING

    def _finalize(self) -> None:
        if self._current_id is not None and self._state is MatchState.CONFIRMED_VALID:
            self.matches.append(self._current_id)

    def feed(self, conversation_id: int, contact_id: int) -> None:
        if conversation_id != self._current_id:
            self._finalize()
            self._current_id = conversation_id
            self._seen = set()
            self._state = MatchState.ACCUMULATING
        self._state = self._transition(contact_id)

    def finish(self) -> List[int]:
        """Finalize the last conversation and return all matching ids."""
        self._finalize()
        self._current_id = None
        return self.matches

    def match(self, rows: Iterable[Tuple[int, int]]) -> List[int]:
        for conversation_id, contact_id in rows:
            self.feed(conversation_id, contact_id)
        return self.finish()


@dataclass
class _PendingConversation:
    id: int
    type: Optional[ConversationType]
    timestamp: Optional[datetime]
    participants: Dict[int, Contact] = field(default_factory=dict)


class GroupFolder:
    """
    Folds newest-first conversation rows into one Group per participant set.

    Rows must be ordered by conversation timestamp descending with the rows
    of each conversation contiguous.
    """

    def __init__(self):
        self.groups: Dict[str, Group] = {}
        self.order: List[Group] = []
        self._pending: Optional[_PendingConversation] = None

    def _close(self) -> None:
        pending = self._pending
        if pending is None:
            return
        key = group_key(pending.participants)
        group = self.groups.get(key)
        if group is None:
            group = Group(
                key=key,
                participants=[pending.participants[cid] for cid in sorted(pending.participants)],
                type=pending.type,
                timestamp=pending.timestamp,
                last_conversation_id=pending.id,
            )
            self.groups[key] = group
            self.order.append(group)
        group.conversation_ids.append(pending.id)

    def feed(self, conversation_id: int, conversation_type: Optional[ConversationType],
             timestamp: Optional[datetime], contact: Contact) -> None:
        if self._pending is None or self._pending.id != conversation_id:
            self._close()
            self._pending = _PendingConversation(conversation_id, conversation_type, timestamp)
        self._pending.participants[contact.id] = contact

    def finish(self) -> List[Group]:
        self._close()
        self._pending = None
        return self.order


def time_key(value: Optional[datetime]) -> Tuple[bool, float]:
    """Sort key placing unset timestamps before every real one."""
    if value is None:
        return (False, 0.0)
    return (True, value.timestamp())


class ContactRegistry:
    """Assigns stable ids to (name, phone number) identities in first-seen order."""

    def __init__(self):
        self._by_identity: Dict[Tuple[str, str], Contact] = {}
        self._by_id: Dict[int, Contact] = {}

    def contact_for(self, name: str, phone_number: str) -> Contact:
        identity = (name, phone_number or "")
        contact = self._by_identity.get(identity)
        if contact is None:
            contact = Contact(name=identity[0], phone_number=identity[1], id=len(self._by_identity) + 1)
            self._by_identity[identity] = contact
            self._by_id[contact.id] = contact
        return contact

    def get(self, contact_id: int) -> Optional[Contact]:
        return self._by_id.get(contact_id)

    def __len__(self) -> int:
        return len(self._by_identity)


class MemoryConversationSource:
    """
    Row source over conversations held in memory.

    Conversation ids follow input order starting at 1; message ids are
    assigned in the same way across all conversations.
    """

    def __init__(self, conversations: Iterable[Conversation]):
        self.registry = ContactRegistry()
        self.conversations: Dict[int, Conversation] = {}
        self._participants: Dict[int, List[Contact]] = {}
        self._messages: Dict[int, List[GroupMessage]] = {}

        message_id = 0
        for conversation_id, conversation in enumerate(conversations, start=1):
            self.conversations[conversation_id] = replace(conversation, id=conversation_id)
            contacts = {
                contact.id: contact for contact in (
                    self.registry.contact_for(name, number)
                    for name, number in conversation.participants.items()
                )
            }
            self._participants[conversation_id] = [contacts[cid] for cid in sorted(contacts)]
            if not contacts:
                logger.debug(f"Conversation {conversation.source_file} has no participants; it forms no group")

            messages = []
            for message in conversation.messages:
                message_id += 1
                sender = self.registry.contact_for(message.sender, message.sender_number) if message.sender else None
                messages.append(GroupMessage(
                    id=message_id,
                    conversation_id=conversation_id,
                    timestamp=message.timestamp,
                    sender_contact_id=sender.id if sender else None,
                    sender_name=message.sender,
                    sender_number=message.sender_number,
                    content=message.content,
                    images=list(message.images),
                ))
            self._messages[conversation_id] = messages

    def iter_participant_rows(self) -> Iterator[Tuple[int, int]]:
        for conversation_id in sorted(self._participants):
            for contact in self._participants[conversation_id]:
                yield conversation_id, contact.id

    def iter_group_rows(self) -> Iterator[Tuple[int, Optional[ConversationType], Optional[datetime], Contact]]:
        ordered = sorted(
            self.conversations.items(),
            key=lambda item: (time_key(item[1].timestamp), item[0]),
            reverse=True,
        )
        for conversation_id, conversation in ordered:
            for contact in self._participants[conversation_id]:
                yield conversation_id, conversation.type, conversation.timestamp, contact

    def fetch_messages(self, conversation_ids: Iterable[int], newest_first: bool = True) -> List[GroupMessage]:
        messages = [
            message
            for conversation_id in sorted(set(conversation_ids))
            for message in self._messages.get(conversation_id, [])
        ]
        if newest_first:
            messages.sort(key=lambda m: (time_key(m.timestamp), m.id), reverse=True)
        else:
            messages.sort(key=lambda m: (m.timestamp is None, time_key(m.timestamp), m.id))
        return messages

    def get_contacts(self, contact_ids: Iterable[int]) -> List[Contact]:
        contacts = (self.registry.get(cid) for cid in sorted(set(contact_ids)))
        return [contact for contact in contacts if contact is not None]

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        return self.conversations.get(conversation_id)


class Reconciler:
    """
    Builds Groups over a row source (ConversationStore or MemoryConversationSource).

    Groups are computed on every call and never stored.
    """

    def __init__(self, source):
        self.source = source

    def list_groups(self, include_messages: bool = True) -> List[Group]:
        """
        Return every distinct participant set as a Group, most recent first.

        Args:
            include_messages: Load the merged, newest-first message list of
                each group

        Returns:
            List of Group
        """
        folder = GroupFolder()
        for conversation_id, conversation_type, timestamp, contact in self.source.iter_group_rows():
            folder.feed(conversation_id, conversation_type, timestamp, contact)
        groups = folder.finish()

        if include_messages:
            for group in groups:
                group.messages = self.source.fetch_messages(group.conversation_ids, newest_first=True)

        logger.info(f"Reconciled conversations into {len(groups)} groups")
        return groups

    def matching_conversation_ids(self, contact_ids: Iterable[int]) -> List[int]:
        """Ids of conversations whose participant set is exactly ``contact_ids``."""
        matcher = ExactSetMatcher(contact_ids)
        return matcher.match(self.source.iter_participant_rows())

    def messages_for_group(self, contact_ids: Iterable[int]) -> Group:
        """
        Merge the messages of every conversation with exactly these participants.

        Returns:
            Group whose messages are newest first, with the participants
            resolved from the contact ids
        """
        contact_ids = sorted(set(contact_ids))
        conversation_ids = self.matching_conversation_ids(contact_ids)
        messages = self.source.fetch_messages(conversation_ids, newest_first=True)

        group = Group(
            key=group_key(contact_ids),
            participants=self.source.get_contacts(contact_ids),
            messages=messages,
            conversation_ids=conversation_ids,
        )

        headers = [self.source.get_conversation(cid) for cid in conversation_ids]
        headers = [header for header in headers if header is not None]
        if headers:
            latest = max(headers, key=lambda conv: (time_key(conv.timestamp), conv.id))
            group.type = latest.type
            group.timestamp = latest.timestamp
            group.last_conversation_id = latest.id

        logger.debug(
            f"Group {group.key}: {len(conversation_ids)} conversation(s), {len(messages)} message(s)"
        )
        return group


def reconcile(conversations: Iterable[Conversation]) -> List[Group]:
    """
    Group in-memory conversations by their exact participant identity set.

    Example:
        groups = reconcile([extract_file(path) for path in paths])
        for group in groups:
            print(group.key, len(group.messages))
    """
    return Reconciler(MemoryConversationSource(conversations)).list_groups()
