"""
Pipeline Architecture Module

Discovery, extraction and output of takeout conversations as a sequence of
stages sharing a PipelineContext.
"""

from .base import PipelineStage, PipelineContext, StageResult
from .manager import PipelineManager

__all__ = [
    'PipelineStage',
    'PipelineContext',
    'StageResult',
    'PipelineManager',
]
