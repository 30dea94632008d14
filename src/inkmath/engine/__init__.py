from .annotations import AnnotationManager
from .board import Board, Bounds, InkPoint, Segment, Shape, draw_shape
from .errors import AuthorizationFailure, ConfigurationMissing, RecognitionError, TransientServiceError
from .evaluator import Evaluation, evaluate
from .normalizer import normalize
from .orchestrator import Outcome, RecognitionOrchestrator, RecognitionSession
from .recognizers import Recognizer, StrokeRecognizer, VisionRecognizer, looks_like_math
from .scheduling import ScheduledTask
from .strokes import EquationCluster, active_cluster, extract_strokes, group_by_proximity

__all__ = [
    "AnnotationManager",
    "AuthorizationFailure",
    "Board",
    "Bounds",
    "ConfigurationMissing",
    "EquationCluster",
    "Evaluation",
    "InkPoint",
    "Outcome",
    "RecognitionError",
    "RecognitionOrchestrator",
    "RecognitionSession",
    "Recognizer",
    "ScheduledTask",
    "Segment",
    "Shape",
    "StrokeRecognizer",
    "TransientServiceError",
    "VisionRecognizer",
    "active_cluster",
    "draw_shape",
    "evaluate",
    "extract_strokes",
    "group_by_proximity",
    "looks_like_math",
    "normalize",
]
