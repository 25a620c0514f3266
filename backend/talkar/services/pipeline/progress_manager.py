"""
Progress management for pipeline jobs.

Maps job stages to an overall progress percentage using stage weights
and provides the human-readable message for each transition.
"""

import logging

from talkar.models.schemas import STAGE_ORDER, PipelineStage

logger = logging.getLogger(__name__)


class ProgressManager:
    """
    Progress calculation for pipeline jobs.

    A job's stage is the last completed step, so progress is the sum of
    the weights of all steps up to and including it. Weights follow
    typical latencies: lip-sync rendering dominates, finalization is instant.

    Example:
        manager = ProgressManager()
        manager.calculate_progress(PipelineStage.SPEECH)  # 50.0 (20 + 30)
    """

    # Progress weights for each step (must sum to 100)
    STAGE_WEIGHTS = {
        PipelineStage.SCRIPT: 20,     # 0-20%
        PipelineStage.SPEECH: 30,     # 20-50%
        PipelineStage.LIPSYNC: 45,    # 50-95%: dominant stage
        PipelineStage.COMPLETED: 5,   # 95-100%: finalize
    }

    STAGE_MESSAGES = {
        PipelineStage.PENDING: "Queued",
        PipelineStage.SCRIPT: "Script generated, synthesizing speech",
        PipelineStage.SPEECH: "Speech ready, rendering lip-sync video",
        PipelineStage.LIPSYNC: "Video rendered, finalizing",
        PipelineStage.COMPLETED: "Ad content ready",
        PipelineStage.FAILED: "Pipeline failed",
    }

    def calculate_progress(self, stage: PipelineStage) -> float:
        """
        Overall progress after reaching a stage.

        Args:
            stage: Last completed stage (PENDING = nothing done)

        Returns:
            Progress percentage (0-100)
        """
        if stage not in self.STAGE_WEIGHTS:
            return 0.0

        progress = 0.0
        for step in STAGE_ORDER:
            progress += self.STAGE_WEIGHTS.get(step, 0)
            if step == stage:
                break
        return min(progress, 100.0)

    def get_message(self, stage: PipelineStage) -> str:
        """Human-readable status message for a stage."""
        return self.STAGE_MESSAGES.get(stage, stage.value)
