"""
Runs the registered conversion stages in dependency order.
"""

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

from .base import PipelineContext, PipelineStage, StageResult

logger = logging.getLogger(__name__)


class PipelineManager:
    """
    Orders and executes pipeline stages.

    Example:
        manager = PipelineManager(Path("Takeout/Voice"))
        manager.register_stages([FileDiscoveryStage(), ContentExtractionStage()])
        results = manager.execute_pipeline()
    """

    def __init__(self, processing_dir: Path):
        self.processing_dir = Path(processing_dir)
        self.stages: Dict[str, PipelineStage] = {}

    def register_stage(self, stage: PipelineStage) -> None:
        self.stages[stage.name] = stage
        logger.debug(f"Registered pipeline stage: {stage.name}")

    def register_stages(self, stages: List[PipelineStage]) -> None:
        for stage in stages:
            self.register_stage(stage)

    def validate_dependencies(self) -> List[str]:
        """
        Check that every dependency is registered and that there are no cycles.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = [
            f"Stage '{name}' depends on unknown stage '{dep}'"
            for name, stage in self.stages.items()
            for dep in stage.get_dependencies()
            if dep not in self.stages
        ]
        if not errors:
            try:
                self.get_execution_order()
            except RuntimeError as e:
                errors.append(str(e))
        return errors

    def get_execution_order(self, requested_stages: Optional[List[str]] = None) -> List[str]:
        """
        Topologically sort the requested stages.

        Ties are broken by registration order so runs are reproducible.

        Raises:
            RuntimeError: If the dependencies form a cycle
        """
        registered = list(self.stages)
        pending = [name for name in registered if requested_stages is None or name in requested_stages]
        ordered: List[str] = []

        while pending:
            ready = next(
                (name for name in pending
                 if all(dep not in pending for dep in self.stages[name].get_dependencies())),
                None,
            )
            if ready is None:
                raise RuntimeError(f"Circular dependency between stages: {', '.join(pending)}")
            ordered.append(ready)
            pending.remove(ready)

        return ordered

    def create_context(self, config: Optional[object] = None) -> PipelineContext:
        return PipelineContext(processing_dir=self.processing_dir, config=config)

    def execute_stage(self, stage_name: str, context: PipelineContext) -> StageResult:
        """
        Run one stage, converting an exception into a failed StageResult.

        The stage's ``cleanup_on_error`` is called when it raises.
        """
        if stage_name not in self.stages:
            raise ValueError(f"Unknown stage: {stage_name}")
        stage = self.stages[stage_name]

        if not stage.validate_prerequisites(context):
            error_msg = f"Prerequisites not met for stage '{stage_name}'"
            logger.error(error_msg)
            return StageResult.failure(error_msg)

        logger.info(f"Executing stage: {stage_name}")
        started = time.perf_counter()
        try:
            result = stage.execute(context)
        except Exception as e:
            error_msg = f"Stage '{stage_name}' failed with exception: {e}"
            logger.error(error_msg, exc_info=True)
            try:
                stage.cleanup_on_error(context, e)
            except Exception as cleanup_error:
                logger.error(f"Cleanup failed for stage '{stage_name}': {cleanup_error}")
            return StageResult.failure(error_msg, time.perf_counter() - started)

        result.execution_time = time.perf_counter() - started
        if result.success:
            context.mark_completed(stage_name, result)
        logger.info(f"Stage '{stage_name}' finished: {result.summary()}")
        return result

    def execute_pipeline(self,
                         stages: Optional[List[str]] = None,
                         config: Optional[object] = None,
                         stop_on_error: bool = True,
                         context: Optional[PipelineContext] = None) -> Dict[str, StageResult]:
        """
        Execute all registered stages, or just ``stages``.

        Args:
            stages: Names of the stages to run (None for all)
            config: Configuration stored on a newly created context
            stop_on_error: Skip the remaining stages after a failure
            context: Existing context to run in

        Returns:
            Dict mapping stage names to their results, in execution order

        Raises:
            RuntimeError: If the stage dependencies are invalid
        """
        problems = self.validate_dependencies()
        if problems:
            raise RuntimeError(f"Pipeline validation failed: {'; '.join(problems)}")

        execution_order = self.get_execution_order(stages)
        logger.info(f"Pipeline execution order: {' → '.join(execution_order)}")
        context = context or self.create_context(config)

        results: Dict[str, StageResult] = {}
        for stage_name in execution_order:
            results[stage_name] = self.execute_stage(stage_name, context)
            if not results[stage_name].success and stop_on_error:
                logger.error(f"Pipeline stopped due to stage failure: {stage_name}")
                break
        return results
