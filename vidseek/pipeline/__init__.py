from .analysis import TextAnalyzer, VisionDescriber, select_frames_for_sampling
from .stages import STAGES, StageContext
from .orchestrator import FAST_PATH, FULL_PATH, PipelineOrchestrator, plan_stages
from .runner import TaskRunner

__all__ = [
    'TextAnalyzer',
    'VisionDescriber',
    'select_frames_for_sampling',
    'STAGES',
    'StageContext',
    'FAST_PATH',
    'FULL_PATH',
    'PipelineOrchestrator',
    'plan_stages',
    'TaskRunner',
]
