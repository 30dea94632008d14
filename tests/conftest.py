"""
Pytest configuration and shared fixtures.
"""
from __future__ import annotations

from typing import Optional

import pytest

from inkmath.clients.vision_service import VisionReply
from inkmath.engine import AnnotationManager, Board, RecognitionOrchestrator, StrokeRecognizer, VisionRecognizer
from inkmath.engine.board import Shape, draw_shape


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStrokeClient:
    """Stands in for StrokeServiceClient; returns queued labels or raises queued errors."""

    name = "stroke"

    def __init__(self, *replies, configured: bool = True) -> None:
        self.replies = list(replies)
        self.configured = configured
        self.calls = 0

    async def recognize(self, strokes) -> Optional[str]:
        self.calls += 1
        reply = self.replies.pop(0) if len(self.replies) > 1 else (self.replies[0] if self.replies else None)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeVisionClient:
    name = "vision"

    def __init__(self, *replies, configured: bool = True) -> None:
        self.replies = list(replies)
        self.configured = configured
        self.calls = 0
        self.images: list[str] = []
        self.solved: list[tuple] = []
        self.answer = "?"

    async def recognize_image(self, data_url: str) -> Optional[VisionReply]:
        self.calls += 1
        self.images.append(data_url)
        reply = self.replies.pop(0) if len(self.replies) > 1 else (self.replies[0] if self.replies else None)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def solve(self, expression: str, variables=None) -> str:
        self.calls += 1
        self.solved.append((expression, variables))
        return self.answer


def line(x0: float, y0: float, x1: float, y1: float, n: int = 5) -> list[list[float]]:
    """Page points [x,y,p] along a straight line."""
    return [
        [x0 + (x1 - x0) * i / (n - 1), y0 + (y1 - y0) * i / (n - 1), 0.5]
        for i in range(n)
    ]


def add_ink(board: Board, x0: float, y0: float, x1: float, y1: float, shape_id: str | None = None) -> Shape:
    return board.create_shape(draw_shape(line(x0, y0, x1, y1), shape_id=shape_id))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def board() -> Board:
    return Board()


@pytest.fixture
def make_orchestrator(board, clock):
    """Build an orchestrator over `board` with fake stroke/vision clients."""

    def _make(stroke: FakeStrokeClient | None = None, vision: FakeVisionClient | None = None, **kwargs):
        recognizers = []
        if stroke is not None:
            recognizers.append(StrokeRecognizer(stroke))
        if vision is not None:
            recognizers.append(VisionRecognizer(vision, image_px=64))
        kwargs.setdefault("debounce_s", 0.01)
        return RecognitionOrchestrator(
            board, recognizers, AnnotationManager(board), clock=clock, **kwargs
        )

    return _make
