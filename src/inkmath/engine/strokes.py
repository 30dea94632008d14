from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from inkmath.protocol.constants import SEGMENT_FREE
from inkmath.protocol.messages import Sample, Stroke

from .board import Bounds, Shape

# Assumed spacing between samples when the source carries no timestamps.
SAMPLE_INTERVAL_MS = 10
DEFAULT_BAND_PADDING = 90.0
DEFAULT_MAX_DISTANCE = 200.0


def _now_ms() -> int:
    return int(time.time() * 1000)


def extract_strokes(shapes: Sequence[Shape], *, now_ms: Optional[int] = None) -> list[Stroke]:
    """
    Convert user draw shapes into page-coordinate strokes.

    Missing timestamps are synthesized 10 ms apart, ending at `now_ms`. This
    keeps relative order for velocity analysis; it is not wall-clock accurate.
    """
    now = _now_ms() if now_ms is None else now_ms
    strokes: list[Stroke] = []
    for shape in shapes:
        if not shape.is_user_ink:
            continue
        for segment in shape.segments:
            if segment.type != SEGMENT_FREE or len(segment.points) < 2:
                continue
            n = len(segment.points)
            samples: list[Sample] = []
            prev_t = None
            for i, pt in enumerate(segment.points):
                t = pt.t if pt.t is not None else now - (n - i) * SAMPLE_INTERVAL_MS
                if prev_t is not None and t < prev_t:
                    t = prev_t
                prev_t = t
                samples.append(Sample(x=shape.x + pt.x, y=shape.y + pt.y, t=t, p=pt.z))
            strokes.append(Stroke(samples=tuple(samples)))
    return strokes


def shape_bounds(shape: Shape) -> Bounds:
    pts = [(shape.x + p.x, shape.y + p.y) for seg in shape.segments for p in seg.points]
    return Bounds.around(pts) or Bounds(shape.x, shape.y, shape.x, shape.y)


def group_by_proximity(
    shapes: Sequence[Shape], max_distance: float = DEFAULT_MAX_DISTANCE
) -> list[list[Shape]]:
    """
    Greedy single-pass grouping of shapes whose boxes lie within `max_distance`.

    A group grows by absorbing any unassigned shape close to any member until
    nothing else qualifies; then the next unassigned shape seeds a new group.
    Members end up as the connected components of the "close enough" graph.
    Groups are ordered by their first member's position in `shapes`.
    """
    if not shapes:
        return []
    bounds = [shape_bounds(s) for s in shapes]
    assigned = [False] * len(shapes)
    groups: list[list[Shape]] = []
    for seed in range(len(shapes)):
        if assigned[seed]:
            continue
        assigned[seed] = True
        members = [seed]
        i = 0
        while i < len(members):
            cur = bounds[members[i]]
            for j in range(len(shapes)):
                if not assigned[j] and cur.distance_to(bounds[j]) <= max_distance:
                    assigned[j] = True
                    members.append(j)
            i += 1
        groups.append([shapes[k] for k in sorted(members)])
    return groups


@dataclass(frozen=True)
class EquationCluster:
    shapes: tuple[Shape, ...]
    bounds: Bounds

    @property
    def anchor_id(self) -> str:
        return self.shapes[0].id

    @property
    def signature(self) -> str:
        return "".join(f"{s.id}:{len(s.segments)};" for s in self.shapes)

    def strokes(self, *, now_ms: Optional[int] = None) -> list[Stroke]:
        return extract_strokes(self.shapes, now_ms=now_ms)

    @classmethod
    def of(cls, shapes: Sequence[Shape]) -> "EquationCluster":
        if not shapes:
            raise ValueError("cluster needs at least one shape")
        box = shape_bounds(shapes[0])
        for s in shapes[1:]:
            box = box.union(shape_bounds(s))
        return cls(tuple(shapes), box)


def active_cluster(
    shapes: Sequence[Shape], band_padding: float = DEFAULT_BAND_PADDING
) -> Optional[EquationCluster]:
    """Cluster of user shapes in the vertical band around the most recent one."""
    ink = [s for s in shapes if s.is_user_ink]
    if not ink:
        return None
    last = shape_bounds(ink[-1])
    lo, hi = last.min_y - band_padding, last.max_y + band_padding
    members = [s for s in ink if shape_bounds(s).overlaps_band(lo, hi)]
    return EquationCluster.of(members)


def hash_strokes(strokes: Sequence[Stroke]) -> str:
    data = "|".join(
        "{}-{}-{}".format(
            ",".join(f"{s.x:g}" for s in st.samples[:5]),
            ",".join(f"{s.y:g}" for s in st.samples[:5]),
            len(st.samples),
        )
        for st in strokes
    )
    return hashlib.sha1(data.encode("utf-8")).hexdigest()[:16]
