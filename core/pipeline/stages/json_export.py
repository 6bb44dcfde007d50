"""
JSON Export Stage

Writes one JSON object per conversation, one per line, to a file or to
standard output.
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import TextIO

from ..base import PipelineStage, PipelineContext, StageResult

logger = logging.getLogger(__name__)

STDOUT_TARGET = "-"


class JsonExportStage(PipelineStage):
    """Serializes extracted conversations as JSON lines."""

    depends_on = ("content_extraction",)

    def __init__(self, output: str = STDOUT_TARGET):
        super().__init__("json_export")
        self.output = output

    def _write(self, conversations, stream: TextIO) -> int:
        written = 0
        for conversation in conversations:
            stream.write(json.dumps(conversation.to_dict(), ensure_ascii=False))
            stream.write("\n")
            written += 1
        return written

    def execute(self, context: PipelineContext) -> StageResult:
        start_time = time.time()
        conversations = context.stage_output("content_extraction", 'conversations')

        result = StageResult(success=True, execution_time=0.0, records_processed=0)
        if self.output == STDOUT_TARGET:
            result.records_processed = self._write(conversations, sys.stdout)
            sys.stdout.flush()
        else:
            output_path = Path(self.output)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w', encoding='utf-8') as f:
                result.records_processed = self._write(conversations, f)
            result.add_output_file(output_path)
            logger.info(f"Wrote {result.records_processed} conversations to {output_path}")

        result.execution_time = time.time() - start_time
        return result
