from .constants import (
    T_ANNOTATION,
    T_ANNOTATION_REMOVED,
    T_CLEAR,
    T_HELLO,
    T_STROKE_BEGIN,
    T_STROKE_END,
    T_STROKE_PTS,
)

__all__ = [
    "T_ANNOTATION",
    "T_ANNOTATION_REMOVED",
    "T_CLEAR",
    "T_HELLO",
    "T_STROKE_BEGIN",
    "T_STROKE_PTS",
    "T_STROKE_END",
]
