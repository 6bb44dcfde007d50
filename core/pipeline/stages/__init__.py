"""
Pipeline Stages

Individual stages of the takeout archive pipeline.
"""

from .file_discovery import FileDiscoveryStage
from .content_extraction import ContentExtractionStage
from .conversation_storage import ConversationStorageStage
from .json_export import JsonExportStage

__all__ = [
    'FileDiscoveryStage',
    'ContentExtractionStage',
    'ConversationStorageStage',
    'JsonExportStage',
]
