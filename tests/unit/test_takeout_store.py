"""
Unit tests for the SQLite conversation store.

Covers transactional writes, contact identity, media capture, the read side
used by the Reconciler and the search queries used by the CLI.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.attachment_resolver import AttachmentResolver
from core.markup_extractor import extract_conversation, extract_file
from core.models import Conversation, ConversationType, Message
from core.reconciler import Reconciler
from core.takeout_store import ConversationStore, StorageError, from_db_timestamp, to_db_timestamp

UTC = timezone.utc
BASE = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def count(store, table):
    return store.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


@pytest.fixture
def store(tmp_path):
    with ConversationStore(tmp_path / "conversations.db") as store:
        yield store


@pytest.fixture
def populated(store, export_dir):
    resolver = AttachmentResolver(export_dir)
    for path in sorted(export_dir.rglob("*.html")):
        store.save_conversation(extract_file(path, root=export_dir), resolver=resolver)
    return store


class TestTimestamps:

    def test_stored_as_utc_with_microseconds(self):
        value = datetime(2022, 6, 30, 18, 6, 39, 894000, tzinfo=timezone(timedelta(hours=-7)))

        assert to_db_timestamp(value) == "2022-07-01T01:06:39.894000+00:00"
        assert from_db_timestamp(to_db_timestamp(value)) == value

    def test_unset(self):
        assert to_db_timestamp(None) is None
        assert from_db_timestamp(None) is None
        assert from_db_timestamp("") is None


class TestSaveConversation:
    """Write side."""

    def test_rows_written(self, populated):
        assert count(populated, "conversation") == 4
        # Sleve, Me, Tony, Mike, Dwigt
        assert count(populated, "contact") == 5
        assert count(populated, "message") == 11
        assert count(populated, "image") == 5

    def test_media_captured_for_resolvable_images(self, populated):
        rows = populated.conn.execute(
            """
            SELECT i.image_url, f.file_name, f.content
            FROM media_file f JOIN image i ON f.image_id = i.id
            ORDER BY i.image_url
            """
        ).fetchall()

        assert [row[0] for row in rows] == [
            "Group Conversation - 2024-05-23T04_48_32Z-1-1",
            "Group Conversation - 2024-05-23T04_48_32Z-1-2",
            "Group Conversation - 2024-05-23T04_48_32Z-2-1",
            "Tony Smehrik - Text - 2022-07-01T01_06_39Z-2-1",
        ]
        assert rows[2][1] == "Group Conversation - 2024-05-23T04_48_32Z-2-1.gif"
        assert bytes(rows[2][2]) == b"GIF89a-group-2-1"

    def test_contacts_shared_across_conversations(self, store):
        first = Conversation(type=ConversationType.CHAT, participants={"Me": "+2222", "Tony": "+333"},
                             messages=[Message(BASE, "Me", "+2222", "hi")], source_file="a.html")
        second = Conversation(type=ConversationType.MISSED_CALL, participants={"Tony": "+333"},
                              timestamp=BASE, source_file="b.html")

        store.save_conversation(first)
        store.save_conversation(second)

        assert count(store, "contact") == 2

    def test_untyped_conversation_rejected(self, store):
        with pytest.raises(StorageError):
            store.save_conversation(Conversation(participants={"X": "1"}, source_file="x.html"))

        assert count(store, "conversation") == 0

    def test_failure_rolls_back_whole_conversation(self, store):
        broken = Conversation(
            type=ConversationType.CHAT,
            participants={"Me": "+2222", "Mike Truk": "+8888"},
            messages=[
                Message(BASE, "Me", "+2222", "fine"),
                Message(BASE, "Mike Truk", "+8888", object()),
            ],
            source_file="broken.html",
        )

        with pytest.raises(StorageError) as exc_info:
            store.save_conversation(broken)

        assert "broken.html" in str(exc_info.value)
        for table in ("conversation", "participant", "contact", "message"):
            assert count(store, table) == 0, table

        store.save_conversation(Conversation(type=ConversationType.MISSED_CALL,
                                             participants={"Me": "+2222"}, source_file="ok.html"))
        assert count(store, "conversation") == 1

    def test_does_not_mutate_input(self, store):
        conversation = Conversation(type=ConversationType.MISSED_CALL, participants={"A": "1"})

        conversation_id = store.save_conversation(conversation)

        assert conversation_id == 1
        assert conversation.id is None


class TestReadSide:
    """Queries used by the Reconciler and the CLI."""

    def test_get_conversation_round_trips_header(self, populated):
        voicemail = populated.search_conversations("Sleve")[0]

        loaded = populated.get_conversation(voicemail.id)
        assert loaded.type is ConversationType.VOICEMAIL
        assert loaded.participants == {"Sleve Mcdichael": "+11111111111"}
        assert loaded.duration == "00:00:18"
        assert loaded.source_file == "Calls/Sleve Mcdichael - Voicemail - 2018-07-23T16_23_31Z.html"
        assert loaded.timestamp == datetime(2018, 7, 23, 16, 23, 31, tzinfo=UTC)

    def test_get_conversation_missing(self, store):
        assert store.get_conversation(42) is None

    def test_fetch_messages_orders_and_aggregates_images(self, populated):
        group_mms = populated.search_conversations("hornet")[0]

        newest = populated.fetch_messages([group_mms.id])
        oldest = populated.fetch_messages([group_mms.id], newest_first=False)

        assert len(newest) == 6
        assert newest[0].content == "Hahaha I love all of these"
        assert [m.id for m in oldest] == [m.id for m in reversed(newest)]
        assert oldest[0].images == [
            "Group Conversation - 2024-05-23T04_48_32Z-1-1",
            "Group Conversation - 2024-05-23T04_48_32Z-1-2",
        ]
        assert oldest[0].sender_name == "Mike Truk"

    def test_participant_rows_ordered_by_conversation(self, populated):
        rows = list(populated.iter_participant_rows())

        assert rows == sorted(rows)

    def test_group_rows_newest_first(self, populated):
        timestamps = []
        for conversation_id, _type, timestamp, _contact in populated.iter_group_rows():
            if not timestamps or timestamps[-1][0] != conversation_id:
                timestamps.append((conversation_id, timestamp))

        values = [timestamp for _id, timestamp in timestamps]
        assert values == sorted(values, reverse=True)


class TestSearch:

    def test_search_matches_text_transcript_and_participants(self, populated):
        assert [c.type for c in populated.search_conversations("Florida")] == [ConversationType.CHAT]
        assert [c.type for c in populated.search_conversations("manager")] == [ConversationType.VOICEMAIL]
        assert [c.type for c in populated.search_conversations("+66666")] == [ConversationType.MISSED_CALL]

    def test_empty_term_matches_all_newest_first(self, populated):
        found = populated.search_conversations()

        assert populated.count_conversations() == 4
        assert [c.timestamp.year for c in found] == [2024, 2022, 2018, 2009]

    def test_limit_offset_and_count(self, populated):
        page = populated.search_conversations("Tony", limit=1, offset=1)

        assert populated.count_conversations("Tony") == 2
        assert len(page) == 1
        assert page[0].timestamp.year == 2022

    def test_previews(self, populated):
        voicemail = populated.search_conversations("manager")[0]
        sms = populated.search_conversations("Florida")[0]
        missed = populated.search_conversations("Dwigt")[0]

        assert populated.conversation_preview(voicemail).startswith("Hi Peter")
        assert populated.conversation_preview(sms).splitlines() == [
            "Me: doing just fine. I moved to Florida",
            "Me: MMS Sent",
            "Tony Smehrik: 💚",
            "Tony Smehrik: all that space",
            "Tony Smehrik: Thank you 🙏",
        ]
        assert populated.conversation_preview(missed) == ""


class TestReconcilerOverStore:
    """The Reconciler reads the same interface from SQLite."""

    def test_split_group_thread(self, store, takeout_html):
        first = extract_conversation(takeout_html["group_mms"], "Calls/Group - part 1.html")
        later = takeout_html["group_mms"].replace("2024-05-22T", "2024-06-22T")
        second = extract_conversation(later, "Calls/Group - part 2.html")
        store.save_conversation(first)
        store.save_conversation(second)
        store.save_conversation(extract_conversation(takeout_html["sms"], "Calls/Tony.html"))

        reconciler = Reconciler(store)
        groups = reconciler.list_groups()

        assert len(groups) == 2
        trio = next(g for g in groups if len(g.participants) == 3)
        assert len(trio.messages) == len(first.messages) + len(second.messages)
        assert trio.last_conversation_id == 2
        assert sorted(trio.conversation_ids) == [1, 2]

        again = reconciler.messages_for_group(trio.contact_ids)
        assert again.conversation_ids == [1, 2]
        assert [m.id for m in again.messages] == [m.id for m in trio.messages]
        assert again.messages[0].timestamp.month == 6
