from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal, Optional

from inkmath.protocol.constants import META_AI_GENERATED, SEGMENT_FREE, SHAPE_DRAW

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center_y(self) -> float:
        return self.min_y + self.height / 2

    def union(self, other: "Bounds") -> "Bounds":
        return Bounds(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
        )

    def distance_to(self, other: "Bounds") -> float:
        """Euclidean gap between two boxes; 0 when they touch or overlap."""
        dx = max(0.0, self.min_x - other.max_x, other.min_x - self.max_x)
        dy = max(0.0, self.min_y - other.max_y, other.min_y - self.max_y)
        return (dx * dx + dy * dy) ** 0.5

    def overlaps_band(self, lo: float, hi: float) -> bool:
        return self.max_y >= lo and self.min_y <= hi

    @classmethod
    def around(cls, points: Iterable[tuple[float, float]]) -> Optional["Bounds"]:
        it = iter(points)
        try:
            x, y = next(it)
        except StopIteration:
            return None
        min_x = max_x = x
        min_y = max_y = y
        for x, y in it:
            min_x = min(min_x, x)
            min_y = min(min_y, y)
            max_x = max(max_x, x)
            max_y = max(max_y, y)
        return cls(min_x, min_y, max_x, max_y)


@dataclass
class InkPoint:
    """Shape-local point. `z` is pen pressure; `t` is an optional ms timestamp."""

    x: float
    y: float
    z: float = 0.5
    t: Optional[int] = None


@dataclass
class Segment:
    points: list[InkPoint] = field(default_factory=list)
    type: str = SEGMENT_FREE


@dataclass
class Shape:
    id: str
    type: str
    x: float = 0.0
    y: float = 0.0
    segments: list[Segment] = field(default_factory=list)
    text: Optional[str] = None
    is_locked: bool = False
    meta: dict[str, object] = field(default_factory=dict)

    @property
    def ai_generated(self) -> bool:
        return bool(self.meta.get(META_AI_GENERATED))

    @property
    def is_user_ink(self) -> bool:
        return self.type == SHAPE_DRAW and not self.ai_generated


def create_shape_id() -> str:
    return f"shape:{uuid.uuid4().hex[:10]}"


def draw_shape(page_points: list[list[float]], *, shape_id: str | None = None) -> Shape:
    """
    Build a single-segment draw shape from page points [x,y,p,t] (p,t optional).

    The shape origin is the first point; segment points are stored shape-local.
    """
    if not page_points:
        raise ValueError("draw shape needs at least one point")
    ox, oy = float(page_points[0][0]), float(page_points[0][1])
    pts: list[InkPoint] = []
    for p in page_points:
        z = float(p[2]) if len(p) >= 3 else 0.5
        t = int(p[3]) if len(p) >= 4 else None
        pts.append(InkPoint(float(p[0]) - ox, float(p[1]) - oy, z, t))
    return Shape(
        id=shape_id or create_shape_id(),
        type=SHAPE_DRAW,
        x=ox,
        y=oy,
        segments=[Segment(points=pts)],
    )


@dataclass(frozen=True)
class BoardChange:
    kind: Literal["added", "removed"]
    shape: Shape


Listener = Callable[[BoardChange], None]


class Board:
    """
    In-memory drawing surface.

    Shapes keep creation order. Listeners are called synchronously after every
    mutation; a failing listener is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._shapes: dict[str, Shape] = {}
        self._listeners: list[Listener] = []

    def shapes(self) -> list[Shape]:
        return list(self._shapes.values())

    def user_shapes(self) -> list[Shape]:
        return [s for s in self._shapes.values() if s.is_user_ink]

    def get_shape(self, shape_id: str) -> Optional[Shape]:
        return self._shapes.get(shape_id)

    def create_shape(self, shape: Shape) -> Shape:
        if shape.id in self._shapes:
            raise ValueError(f"duplicate shape id: {shape.id}")
        self._shapes[shape.id] = shape
        self._emit(BoardChange("added", shape))
        return shape

    def delete_shape(self, shape_id: str) -> bool:
        shape = self._shapes.pop(shape_id, None)
        if shape is None:
            return False
        self._emit(BoardChange("removed", shape))
        return True

    def clear(self) -> None:
        for shape_id in list(self._shapes):
            self.delete_shape(shape_id)

    def listen(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, change: BoardChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("board listener failed on %s %s", change.kind, change.shape.id)
