from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket

from inkmath.clients import StrokeServiceClient, VisionServiceClient
from inkmath.engine import (
    AnnotationManager,
    Board,
    RecognitionOrchestrator,
    Recognizer,
    StrokeRecognizer,
    VisionRecognizer,
)
from inkmath.engine.board import BoardChange
from inkmath.engine.contracts import InMemoryEquationStore
from inkmath.protocol.constants import META_EXPRESSION, META_LATEX, META_SLOT, SHAPE_TEXT
from inkmath.protocol.messages import Annotation, AnnotationRemoved

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


def stroke_client(settings: Settings) -> StrokeServiceClient:
    return StrokeServiceClient(
        settings.stroke_app_key,
        settings.stroke_hmac_key,
        url=settings.stroke_url,
        timeout_s=settings.stroke_timeout_s,
        dpi=settings.stroke_dpi,
    )


def vision_client(settings: Settings) -> VisionServiceClient:
    return VisionServiceClient(
        settings.vision_base_url,
        settings.vision_api_key,
        model=settings.vision_model,
        timeout_s=settings.vision_timeout_s,
    )


def build_recognizers(settings: Settings) -> list[Recognizer]:
    # priority order: stroke service first, vision fallback
    return [
        StrokeRecognizer(stroke_client(settings), evaluation_timeout_s=settings.evaluation_timeout_s),
        VisionRecognizer(vision_client(settings), image_px=settings.vision_image_px),
    ]


@dataclass
class Session:
    board: Board = field(default_factory=Board)
    clients: set[WebSocket] = field(default_factory=set)
    store: InMemoryEquationStore = field(default_factory=InMemoryEquationStore)
    orchestrator: Optional[RecognitionOrchestrator] = None

    # id -> [[x,y,p,t], ...] for strokes still being drawn
    stroke_points4: dict[str, list[list[float]]] = field(default_factory=dict)

    _sends: set[asyncio.Task] = field(default_factory=set)

    def start(self, settings: Settings) -> None:
        if self.orchestrator is not None:
            return
        self.orchestrator = RecognitionOrchestrator(
            self.board,
            build_recognizers(settings),
            AnnotationManager(self.board),
            debounce_s=settings.debounce_s,
            band_padding=settings.band_padding,
            dedup_window_s=settings.dedup_window_s,
            store=self.store,
        )
        self.board.listen(self._on_board_change)
        self.orchestrator.start()

    def close(self) -> None:
        if self.orchestrator is not None:
            self.orchestrator.close()
            self.orchestrator = None

    def _on_board_change(self, change: BoardChange) -> None:
        shape = change.shape
        if not (shape.ai_generated and shape.type == SHAPE_TEXT):
            return
        if change.kind == "added":
            msg = Annotation(
                id=shape.id,
                slot=str(shape.meta.get(META_SLOT, "")),
                x=shape.x,
                y=shape.y,
                text=shape.text or "",
                latex=shape.meta.get(META_LATEX),  # type: ignore[arg-type]
                expression=shape.meta.get(META_EXPRESSION),  # type: ignore[arg-type]
            ).model_dump()
        else:
            msg = AnnotationRemoved(id=shape.id).model_dump()
        task = asyncio.get_running_loop().create_task(broadcast(self, msg))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)


SESSIONS: dict[str, Session] = {}
LOCK = asyncio.Lock()


async def get_session(session_id: str) -> Session:
    async with LOCK:
        if session_id not in SESSIONS:
            session = Session()
            session.start(get_settings())
            SESSIONS[session_id] = session
        return SESSIONS[session_id]


async def drop_session(session_id: str) -> None:
    async with LOCK:
        session = SESSIONS.pop(session_id, None)
    if session is not None:
        session.close()


async def broadcast(session: Session, msg: dict, exclude: WebSocket | None = None) -> None:
    dead: list[WebSocket] = []
    data = json.dumps(msg, separators=(",", ":"), ensure_ascii=False)
    for ws in list(session.clients):
        if exclude is ws:
            continue
        try:
            await ws.send_text(data)
        except Exception:
            dead.append(ws)
    for ws in dead:
        session.clients.discard(ws)
