"""
File Discovery Stage

Lists the exported HTML documents below the processing directory.
"""

import logging
from collections import Counter
from pathlib import Path
from typing import List

from ..base import PipelineStage, PipelineContext, StageResult

logger = logging.getLogger(__name__)


def discover_html_files(processing_dir: Path) -> List[Path]:
    """All ``*.html`` files below ``processing_dir``, sorted for a stable order."""
    return sorted(path for path in processing_dir.rglob("*.html") if path.is_file())


class FileDiscoveryStage(PipelineStage):
    """Finds the takeout documents to extract."""

    def __init__(self):
        super().__init__("file_discovery")

    def validate_prerequisites(self, context: PipelineContext) -> bool:
        if not context.processing_dir.is_dir():
            logger.error(f"Processing directory is missing or not a directory: {context.processing_dir}")
            return False
        return True

    def execute(self, context: PipelineContext) -> StageResult:
        html_files = discover_html_files(context.processing_dir)
        logger.info(f"Found {len(html_files)} HTML files in {context.processing_dir}")

        by_directory = Counter(
            "root" if path.parent == context.processing_dir else path.parent.name
            for path in html_files
        )
        for directory, count in sorted(by_directory.items()):
            logger.debug(f"  {directory}: {count} file(s)")

        context.set_stage_data(self.name, {'files': html_files})

        return StageResult(
            success=True,
            execution_time=0.0,
            records_processed=len(html_files),
            metadata={
                'total_files': len(html_files),
                'by_directory': dict(by_directory),
            }
        )
