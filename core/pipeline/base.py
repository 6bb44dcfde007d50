"""
Building blocks of the conversion pipeline.

A run passes one PipelineContext through a sequence of stages. Each stage
reads what earlier stages stored under their names (discovered files,
extracted conversations) and returns a StageResult describing its own work.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from ..app_config import AppConfig

logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    """Outcome of one stage: counts, produced files and per-record errors."""
    success: bool
    execution_time: float
    records_processed: int
    output_files: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str, execution_time: float = 0.0) -> "StageResult":
        return cls(success=False, execution_time=execution_time, records_processed=0, errors=[error])

    def add_error(self, error: str) -> None:
        """Record a non-fatal error (the stage can still succeed)."""
        self.errors.append(error)

    def add_output_file(self, file_path: Path) -> None:
        self.output_files.append(file_path)

    def set_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    def summary(self) -> str:
        text = f"success={self.success}, time={self.execution_time:.2f}s, records={self.records_processed}"
        if self.errors:
            text += f", errors={len(self.errors)}"
        return text


@dataclass
class PipelineContext:
    """State shared by the stages of one conversion run."""
    processing_dir: Path
    config: Optional["AppConfig"] = None
    stage_state: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    pipeline_start_time: datetime = field(default_factory=datetime.now)

    def get_stage_data(self, stage_name: str) -> Optional[Dict[str, Any]]:
        return self.stage_state.get(stage_name)

    def set_stage_data(self, stage_name: str, data: Dict[str, Any]) -> None:
        self.stage_state[stage_name] = data

    def stage_output(self, stage_name: str, key: str) -> Any:
        """
        Fetch one value stored by an earlier stage.

        Raises:
            RuntimeError: If the stage stored nothing under ``key``
        """
        data = self.get_stage_data(stage_name) or {}
        if key not in data:
            raise RuntimeError(f"Stage '{stage_name}' has not produced '{key}'")
        return data[key]

    def mark_completed(self, stage_name: str, result: StageResult) -> None:
        data = self.stage_state.setdefault(stage_name, {})
        data.update({
            'completed': True,
            'execution_time': result.execution_time,
            'records_processed': result.records_processed,
        })

    def has_stage_completed(self, stage_name: str) -> bool:
        data = self.get_stage_data(stage_name)
        return data is not None and data.get('completed', False)


class PipelineStage(ABC):
    """
    One step of the conversion.

    Subclasses name the stages they read from in ``depends_on``; the manager
    runs those first and refuses to start a stage whose inputs are missing.
    """

    depends_on: Tuple[str, ...] = ()

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{name}")

    @abstractmethod
    def execute(self, context: PipelineContext) -> StageResult:
        """
        Run the stage.

        Args:
            context: Shared run state; results of earlier stages are read
                from it and this stage's outputs are stored in it

        Returns:
            StageResult: Result of stage execution
        """

    def get_dependencies(self) -> List[str]:
        return list(self.depends_on)

    def validate_prerequisites(self, context: PipelineContext) -> bool:
        missing = [dep for dep in self.get_dependencies() if not context.has_stage_completed(dep)]
        if missing:
            self.logger.error(f"Stage '{self.name}' requires {', '.join(missing)} to complete first")
            return False
        return True

    def cleanup_on_error(self, context: PipelineContext, error: Exception) -> None:
        """Undo partial output after ``execute`` raised. Default: nothing to undo."""
