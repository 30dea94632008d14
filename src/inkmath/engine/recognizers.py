from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Optional

from inkmath.protocol.constants import BACKEND_STROKE, BACKEND_VISION
from inkmath.protocol.messages import RecognitionResult

from .evaluator import EVALUATION_TIMEOUT_S, Evaluation, evaluate, evaluate_in_thread
from .rendering import render_strokes_data_url
from .strokes import EquationCluster

if TYPE_CHECKING:
    from inkmath.clients.stroke_service import StrokeServiceClient
    from inkmath.clients.vision_service import VisionServiceClient

    from .orchestrator import RecognitionSession

logger = logging.getLogger(__name__)

_DIGIT_RE = re.compile(r"\d")
_OPERATOR_RE = re.compile(r"[+\-*/=^×÷·−]")
_WORD_RE = re.compile(r"[A-Za-z]{3,}")


def looks_like_math(text: Optional[str]) -> bool:
    """Cheap filter for OCR picking up ordinary handwriting."""
    if not text:
        return False
    if not _DIGIT_RE.search(text) or not _OPERATOR_RE.search(text):
        return False
    return len(_WORD_RE.findall(text)) <= 2


class Recognizer(ABC):
    """One recognition backend, tried in priority order by the orchestrator."""

    name: str

    @abstractmethod
    def is_available(self, session: "RecognitionSession") -> bool: ...

    @abstractmethod
    async def try_recognize(self, cluster: EquationCluster) -> Optional[RecognitionResult]: ...


class StrokeRecognizer(Recognizer):
    """Stroke-based service returns LaTeX only; the value comes from local evaluation."""

    name = BACKEND_STROKE

    def __init__(
        self,
        client: "StrokeServiceClient",
        *,
        evaluator: Callable[[Optional[str]], Evaluation] = evaluate,
        evaluation_timeout_s: float = EVALUATION_TIMEOUT_S,
    ) -> None:
        self.client = client
        self.evaluator = evaluator
        self.evaluation_timeout_s = evaluation_timeout_s

    def is_available(self, session: "RecognitionSession") -> bool:
        if not self.client.configured:
            session.warn_missing_config(self.name, "stroke recognition disabled: missing application/hmac key")
            return False
        return self.name not in session.auth_failed

    async def try_recognize(self, cluster: EquationCluster) -> Optional[RecognitionResult]:
        strokes = cluster.strokes()
        if not strokes:
            return None
        latex = await self.client.recognize(strokes)
        if not latex:
            return None
        ev = await evaluate_in_thread(latex, evaluator=self.evaluator, timeout_s=self.evaluation_timeout_s)
        return RecognitionResult(latex=latex, expression=ev.expression, value=ev.value, backend=self.name)


class VisionRecognizer(Recognizer):
    """Renders the cluster and asks a vision model to read and solve it."""

    name = BACKEND_VISION

    def __init__(self, client: "VisionServiceClient", *, image_px: int = 512) -> None:
        self.client = client
        self.image_px = image_px

    def is_available(self, session: "RecognitionSession") -> bool:
        if not self.client.configured:
            session.warn_missing_config(self.name, "vision recognition disabled: no service URL")
            return False
        return self.name not in session.auth_failed

    async def try_recognize(self, cluster: EquationCluster) -> Optional[RecognitionResult]:
        strokes = cluster.strokes()
        if not strokes:
            return None
        data_url = render_strokes_data_url(strokes=strokes, bounds=cluster.bounds, px=self.image_px)
        reply = await self.client.recognize_image(data_url)
        if reply is None:
            return None
        if not looks_like_math(reply.expression):
            logger.debug("vision reply rejected as non-math: %r", reply.expression)
            return None
        return RecognitionResult(expression=reply.expression, value=reply.answer, backend=self.name)
