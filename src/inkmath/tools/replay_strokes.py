from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

import websockets

from inkmath.protocol.constants import T_ANNOTATION, T_ANNOTATION_REMOVED, T_STROKE_BEGIN, T_STROKE_END, T_STROKE_PTS

_INK_TYPES = (T_STROKE_BEGIN, T_STROKE_PTS, T_STROKE_END)


def load_events(jsonl_path: Path) -> list[tuple[int | None, dict]]:
    """
    Read recorded ink events.

    Accepted line formats:
      - {"ts": <ms>, "msg": {...}}
      - or raw messages per line: {...}
    Only stroke_* messages are kept.
    """
    events: list[tuple[int | None, dict]] = []
    for line in jsonl_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        obj = json.loads(line)
        if isinstance(obj, dict) and isinstance(obj.get("msg"), dict):
            ts = obj.get("ts")
            msg = obj["msg"]
            stamp = int(ts) if isinstance(ts, (int, float)) else None
        elif isinstance(obj, dict):
            msg, stamp = obj, None
        else:
            continue
        if msg.get("t") in _INK_TYPES:
            events.append((stamp, msg))
    return events


async def _print_answers(ws) -> None:
    async for raw in ws:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        msg = json.loads(raw)
        t = msg.get("t") if isinstance(msg, dict) else None
        if t == T_ANNOTATION:
            print(f"[answer] {msg.get('text')}  (expression={msg.get('expression')!r}, latex={msg.get('latex')!r})")
        elif t == T_ANNOTATION_REMOVED:
            print(f"[answer removed] {msg.get('id')}")


async def replay(
    ws_url: str,
    jsonl_path: Path,
    *,
    speed: float = 1.0,
    default_dt_ms: int = 0,
    linger_s: float = 5.0,
) -> None:
    """Replay recorded strokes into a board session and print the answers it places."""
    events = load_events(jsonl_path)

    async with websockets.connect(ws_url, max_size=2**22) as ws:
        reader = asyncio.create_task(_print_answers(ws))
        prev_ts: int | None = None
        for ts, msg in events:
            if ts is not None and prev_ts is not None:
                dt_ms = max(0, ts - prev_ts)
            else:
                dt_ms = default_dt_ms

            prev_ts = ts if ts is not None else prev_ts
            if dt_ms:
                await asyncio.sleep((dt_ms / 1000.0) / max(0.01, speed))

            await ws.send(json.dumps(msg, ensure_ascii=False, separators=(",", ":")))

        # recognition is debounced; wait for answers before hanging up
        await asyncio.sleep(linger_s)
        reader.cancel()


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay stroke JSONL into a board session and print answers.")
    ap.add_argument("--ws", required=True, help="WebSocket URL, e.g. ws://127.0.0.1:8000/ws/session1")
    ap.add_argument("--in", dest="inp", required=True, help="Input JSONL path")
    ap.add_argument("--speed", type=float, default=1.0, help="Speed multiplier (2.0 = 2x faster)")
    ap.add_argument("--default-dt-ms", type=int, default=0, help="Delay between messages if no timestamps")
    ap.add_argument("--linger", type=float, default=5.0, help="Seconds to wait for answers after the last stroke")
    args = ap.parse_args()

    asyncio.run(
        replay(
            args.ws,
            Path(args.inp),
            speed=args.speed,
            default_dt_ms=args.default_dt_ms,
            linger_s=args.linger,
        )
    )


if __name__ == "__main__":
    main()
