"""
Content Extraction Stage

Turns each discovered HTML document into a Conversation. Documents are
independent, so extraction runs on a thread pool; a document that cannot be
parsed or holds no recognized record is logged with its file name and
skipped.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..base import PipelineStage, PipelineContext, StageResult
from ...markup_extractor import ExtractionError, extract_file
from ...models import Conversation

logger = logging.getLogger(__name__)


class ContentExtractionStage(PipelineStage):
    """Extracts Conversations from takeout HTML documents."""

    depends_on = ("file_discovery",)

    def __init__(self, max_workers: int = 4):
        super().__init__("content_extraction")
        self.max_workers = max_workers

    def _extract_one(self, file_path: Path, root: Path) -> Tuple[Path, Optional[Conversation], Optional[str]]:
        try:
            return file_path, extract_file(file_path, root=root), None
        except ExtractionError as e:
            return file_path, None, str(e)

    def execute(self, context: PipelineContext) -> StageResult:
        start_time = time.time()
        files: List[Path] = context.stage_output("file_discovery", 'files')
        root = context.processing_dir

        logger.info(f"Extracting conversations from {len(files)} files with {self.max_workers} worker(s)")

        conversations: List[Conversation] = []
        failures: List[str] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            outcomes = executor.map(lambda path: self._extract_one(path, root), files)
            for file_path, conversation, error in outcomes:
                if conversation is None:
                    logger.error(f"Skipping {file_path.name}: {error}")
                    failures.append(error)
                    continue
                for problem in conversation.validate():
                    logger.warning(f"{conversation.source_file}: {problem}")
                conversations.append(conversation)

        type_counts: Dict[str, int] = {}
        for conversation in conversations:
            type_counts[conversation.type.value] = type_counts.get(conversation.type.value, 0) + 1

        context.set_stage_data(self.name, {
            'conversations': conversations,
            'failures': failures,
        })

        total_messages = sum(len(conversation.messages) for conversation in conversations)
        logger.info(
            f"Extracted {len(conversations)} conversations ({total_messages} messages), "
            f"{len(failures)} file(s) skipped"
        )

        return StageResult(
            success=True,
            execution_time=time.time() - start_time,
            records_processed=len(conversations),
            errors=failures,
            metadata={
                'conversations_extracted': len(conversations),
                'total_messages': total_messages,
                'type_counts': type_counts,
                'extraction_errors': len(failures),
            }
        )
