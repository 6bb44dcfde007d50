"""
Conversation Storage Stage

Persists extracted conversations into the SQLite store, one transaction per
conversation. A conversation that fails to store is rolled back, reported,
and does not stop the remaining ones.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from ..base import PipelineStage, PipelineContext, StageResult
from ...attachment_resolver import AttachmentResolver
from ...takeout_store import ConversationStore, StorageError

logger = logging.getLogger(__name__)


class ConversationStorageStage(PipelineStage):
    """Writes conversations, contacts, messages and attachments to SQLite."""

    depends_on = ("content_extraction",)

    def __init__(self, database_path: Path, media_dir: Optional[Path] = None):
        super().__init__("conversation_storage")
        self.database_path = Path(database_path)
        self.media_dir = media_dir

    def execute(self, context: PipelineContext) -> StageResult:
        start_time = time.time()
        conversations = context.stage_output("content_extraction", 'conversations')
        resolver = AttachmentResolver(self.media_dir) if self.media_dir else None

        result = StageResult(success=True, execution_time=0.0, records_processed=0)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        with ConversationStore(self.database_path) as store:
            for conversation in conversations:
                try:
                    store.save_conversation(conversation, resolver=resolver)
                    result.records_processed += 1
                except StorageError as e:
                    logger.error(str(e))
                    result.add_error(str(e))

        logger.info(
            f"Stored {result.records_processed}/{len(conversations)} conversations in {self.database_path}"
        )
        result.execution_time = time.time() - start_time
        result.add_output_file(self.database_path)
        result.set_metadata('conversations_stored', result.records_processed)
        result.set_metadata('storage_errors', len(result.errors))
        return result
