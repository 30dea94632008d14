from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from inkmath.protocol.constants import (
    META_AI_GENERATED,
    META_AI_MODE,
    META_AI_TIMESTAMP,
    META_EXPRESSION,
    META_LATEX,
    META_SLOT,
    SHAPE_TEXT,
)
from inkmath.protocol.messages import RecognitionResult

from .board import Board, Bounds, Shape, create_shape_id

logger = logging.getLogger(__name__)

ANSWER_MARGIN = 30.0
BASELINE_OFFSET = 20.0


class AnnotationManager:
    """
    Places the rendered answer next to its cluster.

    One tracked shape per slot: the previous one is deleted before the new one
    is created. Annotations are locked and tagged `ai_generated` so they never
    feed back into recognition.
    """

    def __init__(
        self,
        board: Board,
        *,
        margin: float = ANSWER_MARGIN,
        baseline_offset: float = BASELINE_OFFSET,
        ai_mode: str = "quick-math",
    ) -> None:
        self.board = board
        self.margin = margin
        self.baseline_offset = baseline_offset
        self.ai_mode = ai_mode
        self._slots: dict[str, str] = {}

    def placement(self, target: Bounds) -> tuple[float, float]:
        return target.max_x + self.margin, target.center_y - self.baseline_offset

    def display(self, result: RecognitionResult, target: Bounds, *, slot: str) -> Shape:
        self.remove(slot)
        x, y = self.placement(target)
        shape = Shape(
            id=create_shape_id(),
            type=SHAPE_TEXT,
            x=x,
            y=y,
            text=result.display_text(),
            is_locked=True,
            meta={
                META_AI_GENERATED: True,
                META_AI_MODE: self.ai_mode,
                META_AI_TIMESTAMP: datetime.now(timezone.utc).isoformat(),
                META_LATEX: result.latex,
                META_EXPRESSION: result.expression,
                META_SLOT: slot,
            },
        )
        self._slots[slot] = shape.id
        self.board.create_shape(shape)
        logger.debug("annotation %s in slot %s: %s", shape.id, slot, shape.text)
        return shape

    def annotation_for(self, slot: str) -> Optional[Shape]:
        shape_id = self._slots.get(slot)
        return self.board.get_shape(shape_id) if shape_id else None

    def remove(self, slot: str) -> bool:
        shape_id = self._slots.pop(slot, None)
        if shape_id is None:
            return False
        return self.board.delete_shape(shape_id)

    def clear(self) -> None:
        for slot in list(self._slots):
            self.remove(slot)
