from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import TypeAdapter, ValidationError

from inkmath.clients import StrokeServiceClient, VisionServiceClient
from inkmath.engine.evaluator import evaluate_in_thread
from inkmath.engine.errors import AuthorizationFailure, ConfigurationMissing, TransientServiceError
from inkmath.engine.board import draw_shape
from inkmath.protocol.messages import (
    Clear,
    Hello,
    InboundMsg,
    OcrRequest,
    OcrResponse,
    RawStroke,
    RecognitionResult,
    RecognizeRequest,
    RecognizeResponse,
    Sample,
    SolveRequest,
    SolveResponse,
    Stroke,
    StrokeBegin,
    StrokeEnd,
    StrokePts,
)

from .config import get_settings
from .sessions import SESSIONS, Session, broadcast, drop_session, get_session, stroke_client, vision_client

logger = logging.getLogger(__name__)

MAX_BUFFERED_POINTS = 4096

_INBOUND: TypeAdapter[InboundMsg] = TypeAdapter(InboundMsg)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    yield
    for session_id in list(SESSIONS):
        await drop_session(session_id)


app = FastAPI(lifespan=lifespan)


def get_stroke_client() -> StrokeServiceClient:
    return stroke_client(get_settings())


def get_vision_client() -> VisionServiceClient:
    return vision_client(get_settings())


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, ConfigurationMissing):
        return HTTPException(status_code=500, detail=str(e))
    if isinstance(e, AuthorizationFailure):
        return HTTPException(status_code=401, detail=str(e))
    status = getattr(e, "status", None) or 502
    return HTTPException(status_code=status, detail=str(e))


def _to_stroke(raw: RawStroke) -> Stroke | None:
    """Fill in missing timing (10 ms steps) and pressure (0.5); keep `t` non-decreasing."""
    n = min(len(raw.x), len(raw.y))
    if n < 2:
        return None
    t = raw.t if raw.t and len(raw.t) >= n else [i * 10 for i in range(n)]
    p = raw.p if raw.p and len(raw.p) >= n else [0.5] * n
    samples: list[Sample] = []
    prev_t: int | None = None
    for i in range(n):
        ti = int(t[i])
        # client clocks can step backwards; timestamps must not
        if prev_t is not None and ti < prev_t:
            ti = prev_t
        prev_t = ti
        samples.append(Sample(x=raw.x[i], y=raw.y[i], t=ti, p=p[i]))
    return Stroke(samples=tuple(samples))


def _to_origin(strokes: list[Stroke]) -> list[Stroke]:
    min_x = min(s.x for st in strokes for s in st.samples)
    min_y = min(s.y for st in strokes for s in st.samples)
    return [
        Stroke(
            samples=tuple(
                s.model_copy(update={"x": s.x - min_x, "y": s.y - min_y}) for s in st.samples
            )
        )
        for st in strokes
    ]


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/api/recognize", response_model=RecognizeResponse)
async def recognize(req: RecognizeRequest, client: StrokeServiceClient = Depends(get_stroke_client)):
    strokes = [s for s in (_to_stroke(r) for r in req.strokes) if s is not None]
    if not strokes:
        raise HTTPException(status_code=400, detail="No stroke data provided")
    try:
        latex = await client.recognize(_to_origin(strokes))
    except (ConfigurationMissing, AuthorizationFailure, TransientServiceError) as e:
        logger.error("recognize failed: %s", e)
        raise _http_error(e) from e
    ev = await evaluate_in_thread(latex, timeout_s=get_settings().evaluation_timeout_s)
    result = RecognitionResult(latex=latex, expression=ev.expression, value=ev.value, backend=client.name)
    return RecognizeResponse(result=result)


@app.post("/api/solve", response_model=SolveResponse)
async def solve(req: SolveRequest, client: VisionServiceClient = Depends(get_vision_client)):
    if not req.expression.strip():
        raise HTTPException(status_code=400, detail="No expression provided")
    try:
        answer = await client.solve(req.expression, req.variables)
    except (ConfigurationMissing, AuthorizationFailure, TransientServiceError) as e:
        logger.error("solve failed: %s", e)
        raise _http_error(e) from e
    return SolveResponse(answer=answer)


@app.post("/api/ocr", response_model=OcrResponse)
async def ocr(req: OcrRequest, client: VisionServiceClient = Depends(get_vision_client)):
    if not req.image.startswith("data:image/"):
        raise HTTPException(status_code=400, detail="Image must be a valid base64 data URL (data:image/...)")
    try:
        reply = await client.recognize_image(req.image)
    except (ConfigurationMissing, AuthorizationFailure, TransientServiceError) as e:
        logger.error("ocr failed: %s", e)
        raise _http_error(e) from e
    if reply is None:
        return OcrResponse()
    return OcrResponse(expression=reply.expression, answer=reply.answer)


def _finish_stroke(session: Session, sid: str) -> None:
    pts = session.stroke_points4.pop(sid, None)
    if not pts:
        return
    shape_id = f"shape:{sid}"
    if session.board.get_shape(shape_id) is not None:
        return
    session.board.create_shape(draw_shape(pts, shape_id=shape_id))


def _clear(session: Session) -> None:
    session.stroke_points4.clear()
    if session.orchestrator is not None:
        session.orchestrator.annotations.clear()
        session.orchestrator.reset()
    session.board.clear()


@app.websocket("/ws/{session_id}")
async def ws(session_id: str, ws: WebSocket):
    await ws.accept()
    session = await get_session(session_id)
    session.clients.add(ws)

    await ws.send_text(json.dumps(Hello(session=session_id).model_dump(), separators=(",", ":")))

    try:
        while True:
            raw = await ws.receive_text()
            msg = json.loads(raw)
            try:
                parsed = _INBOUND.validate_python(msg)
            except ValidationError as e:
                logger.debug("[ws:%s] dropped malformed message: %s", session_id, e)
                continue
            if get_settings().debug_log_msgs:
                logger.debug("[ws:%s] in t=%s from=%s", session_id, parsed.t, getattr(ws.client, "host", None))

            if isinstance(parsed, StrokeBegin):
                session.stroke_points4[parsed.id] = []

            if isinstance(parsed, StrokePts) and parsed.pts:
                buf = session.stroke_points4.setdefault(parsed.id, [])
                buf.extend(p for p in parsed.pts if len(p) >= 2)
                # Keep this bounded in memory.
                if len(buf) > MAX_BUFFERED_POINTS:
                    session.stroke_points4[parsed.id] = buf[-MAX_BUFFERED_POINTS:]

            # Relay the client's own message so extra fields survive
            await broadcast(session, msg, exclude=ws)

            # Ink lands on the board (and triggers recognition) only on stroke_end
            if isinstance(parsed, StrokeEnd):
                _finish_stroke(session, parsed.id)

            if isinstance(parsed, Clear):
                _clear(session)

    except WebSocketDisconnect:
        session.clients.discard(ws)
    except Exception:
        logger.exception("[ws:%s] connection failed", session_id)
        session.clients.discard(ws)
