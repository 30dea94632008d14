"""
Recognition orchestration for one drawing surface.

Idle -> Debouncing on a qualifying board mutation; Debouncing -> Recognizing
when the quiet period expires; Recognizing tries each recognizer in priority
order and ends Displayed (annotation placed) or Failed (silently dropped).

Each attempt carries the signature of the cluster it was computed from. A
result is applied only while that signature is still the current target, so a
slow call cannot overwrite the answer for newer ink.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from inkmath.protocol.messages import RecognitionResult

from .annotations import AnnotationManager
from .board import Board, BoardChange
from .contracts import AllowAll, Entitlement, EquationRecord, EquationStore
from .errors import AuthorizationFailure, ConfigurationMissing, TransientServiceError
from .recognizers import Recognizer
from .scheduling import ScheduledTask
from .strokes import DEFAULT_BAND_PADDING, EquationCluster, active_cluster, hash_strokes

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_S = 1.5
DEFAULT_DEDUP_WINDOW_S = 2.0
CACHE_SIZE = 100
# Equation records closer than this vertically are the same line.
LINE_TOLERANCE = 50.0


class Outcome(str, enum.Enum):
    DISPLAYED = "displayed"
    SUPPRESSED = "suppressed"
    STALE = "stale"
    UNRECOGNIZED = "unrecognized"
    EMPTY = "empty"
    BUSY = "busy"


@dataclass
class RecognitionSession:
    """Per-surface recognition state. Sticky sets are never cleared."""

    last_shape_count: int = 0
    last_signature: Optional[str] = None
    target_signature: Optional[str] = None
    last_value: Optional[str] = None
    last_displayed_at: Optional[float] = None
    last_slot: Optional[str] = None
    auth_failed: set[str] = field(default_factory=set)
    missing_config_warned: set[str] = field(default_factory=set)
    in_flight: bool = False
    rerun_requested: bool = False
    cache: "OrderedDict[str, RecognitionResult]" = field(default_factory=OrderedDict)
    cache_size: int = CACHE_SIZE

    def warn_missing_config(self, backend: str, message: str) -> None:
        if backend not in self.missing_config_warned:
            self.missing_config_warned.add(backend)
            logger.warning(message)

    def mark_auth_failed(self, backend: str, detail: object) -> None:
        if backend not in self.auth_failed:
            self.auth_failed.add(backend)
            logger.error("%s backend unauthorized, skipping it for this session: %s", backend, detail)

    def cache_get(self, key: Optional[str]) -> Optional[RecognitionResult]:
        if key is None:
            return None
        return self.cache.get(key)

    def cache_put(self, key: Optional[str], result: RecognitionResult) -> None:
        if key is None:
            return
        self.cache[key] = result
        self.cache.move_to_end(key)
        while len(self.cache) > self.cache_size:
            self.cache.popitem(last=False)

    def is_duplicate(self, slot: str, value: Optional[str], now: float, window_s: float) -> bool:
        """Same value for the same slot within the window; other lines never dedup."""
        if self.last_displayed_at is None or slot != self.last_slot or value != self.last_value:
            return False
        return (now - self.last_displayed_at) < window_s

    def reset(self) -> None:
        self.last_shape_count = 0
        self.last_signature = None
        self.target_signature = None
        self.last_value = None
        self.last_displayed_at = None
        self.last_slot = None


class RecognitionOrchestrator:
    def __init__(
        self,
        board: Board,
        recognizers: Sequence[Recognizer],
        annotations: Optional[AnnotationManager] = None,
        *,
        session: Optional[RecognitionSession] = None,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
        band_padding: float = DEFAULT_BAND_PADDING,
        dedup_window_s: float = DEFAULT_DEDUP_WINDOW_S,
        entitlement: Optional[Entitlement] = None,
        store: Optional[EquationStore] = None,
        clock: Callable[[], float] = time.monotonic,
        on_result: Optional[Callable[[RecognitionResult], None]] = None,
        on_equations_change: Optional[Callable[[list[EquationRecord]], None]] = None,
    ) -> None:
        self.board = board
        self.recognizers = list(recognizers)
        self.annotations = annotations if annotations is not None else AnnotationManager(board)
        self.session = session or RecognitionSession()
        self.band_padding = band_padding
        self.dedup_window_s = dedup_window_s
        self.entitlement = entitlement or AllowAll()
        self.store = store
        self.clock = clock
        self.on_result = on_result
        self.on_equations_change = on_equations_change
        self.equations: list[EquationRecord] = []
        self.timer = ScheduledTask(debounce_s, self._on_timer)
        self._unsubscribe: Optional[Callable[[], None]] = None

    # --- lifecycle ---------------------------------------------------------------

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.board.listen(self._on_board_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.timer.close()

    async def __aenter__(self) -> "RecognitionOrchestrator":
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()

    def reset(self) -> None:
        """Forget processed input (e.g. after the board was cleared)."""
        self.timer.cancel()
        self.session.reset()
        self.equations = []

    # --- Idle -> Debouncing ------------------------------------------------------

    def _on_board_change(self, change: BoardChange) -> None:
        if change.shape.ai_generated:
            return
        self.handle_change()

    def handle_change(self) -> bool:
        """Returns True when the debounce timer was (re)started."""
        s = self.session
        shapes = self.board.user_shapes()
        if len(shapes) == s.last_shape_count:
            return False
        s.last_shape_count = len(shapes)

        cluster = active_cluster(shapes, self.band_padding)
        if cluster is None:
            s.target_signature = None
            self.timer.cancel()
            return False
        s.target_signature = cluster.signature
        if cluster.signature == s.last_signature:
            return False
        self.timer.reschedule()
        return True

    async def _on_timer(self) -> None:
        await self.recognize_now()

    # --- Recognizing -------------------------------------------------------------

    async def recognize_now(self) -> Outcome:
        s = self.session
        if s.in_flight:
            s.rerun_requested = True
            return Outcome.BUSY
        cluster = active_cluster(self.board.user_shapes(), self.band_padding)
        if cluster is None:
            return Outcome.EMPTY

        token = cluster.signature
        s.target_signature = token
        s.in_flight = True
        try:
            result = await self._recognize(cluster)
        finally:
            s.in_flight = False
            if s.rerun_requested:
                s.rerun_requested = False
                self.timer.reschedule()
        return self._apply(token, cluster, result)

    async def _recognize(self, cluster: EquationCluster) -> Optional[RecognitionResult]:
        s = self.session
        strokes = cluster.strokes()
        key = hash_strokes(strokes) if strokes else None
        cached = s.cache_get(key)
        if cached is not None:
            return cached

        for recognizer in self.recognizers:
            if not self.entitlement.allows(recognizer.name):
                continue
            if not recognizer.is_available(s):
                continue
            try:
                result = await recognizer.try_recognize(cluster)
            except AuthorizationFailure as e:
                s.mark_auth_failed(recognizer.name, e)
                continue
            except ConfigurationMissing as e:
                s.warn_missing_config(recognizer.name, str(e))
                continue
            except TransientServiceError as e:
                logger.warning("%s backend failed: %s", recognizer.name, e)
                continue
            if result is not None and result.usable:
                s.cache_put(key, result)
                return result
        return None

    # --- Displayed / Failed ------------------------------------------------------

    def _apply(
        self, token: str, cluster: EquationCluster, result: Optional[RecognitionResult]
    ) -> Outcome:
        s = self.session
        if result is None or not result.usable:
            return Outcome.UNRECOGNIZED
        if token != s.target_signature:
            logger.debug("dropping stale result %r for %s", result.value, token)
            return Outcome.STALE

        now = self.clock()
        if s.is_duplicate(cluster.anchor_id, result.value, now, self.dedup_window_s):
            s.last_signature = token
            return Outcome.SUPPRESSED

        self.annotations.display(result, cluster.bounds, slot=cluster.anchor_id)
        s.last_signature = token
        s.last_value = result.value
        s.last_displayed_at = now
        s.last_slot = cluster.anchor_id
        self._record_equation(cluster, result)
        if self.on_result is not None:
            self.on_result(result)
        return Outcome.DISPLAYED

    def _record_equation(self, cluster: EquationCluster, result: RecognitionResult) -> None:
        record = EquationRecord(
            recognized=result.latex or result.expression or "",
            solution=result.display_text(),
            bounds=cluster.bounds,
        )
        self.equations = [
            e for e in self.equations if abs(e.bounds.min_y - record.bounds.min_y) > LINE_TOLERANCE
        ] + [record]
        if self.store is not None:
            self.store.save(record)
        if self.on_equations_change is not None:
            self.on_equations_change(list(self.equations))
