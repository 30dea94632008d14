from __future__ import annotations

import asyncio
import json
import logging
import re
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional

from inkmath.engine.errors import AuthorizationFailure, ConfigurationMissing, TransientServiceError
from inkmath.protocol.constants import BACKEND_VISION

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ai.hackclub.com"
DEFAULT_MODEL = "google/gemini-2.5-flash-preview-05-20"

RECOGNIZE_PROMPT = (
    "Look at this handwritten math. Reply with exactly one line, nothing else:\n"
    "- NOT_MATH if it is not mathematics\n"
    "- INCOMPLETE if the expression is still being written\n"
    "- UNCLEAR if you cannot read it\n"
    "- otherwise: EXPRESSION: <the expression as plain text>, ANSWER: <the final answer>\n"
    "Example: EXPRESSION: 36 + 15, ANSWER: 51"
)

SOLVE_PROMPT = """You are a math solver. Given a mathematical expression or equation, compute the answer.

RULES:
1. Return ONLY the final numerical answer or simplified result
2. Do NOT show work or steps
3. Do NOT include explanations
4. If it's an equation to solve (like "2x + 5 = 15"), return the solution (like "x = 5")
5. If it's an expression to evaluate (like "3 + 5"), return the result (like "8")
6. Round decimals to 4 places max
7. If you cannot solve it, return "?"
"""

_STATUS_REPLIES = ("NOT_MATH", "INCOMPLETE", "UNCLEAR")
_EXPRESSION_RE = re.compile(r"EXPRESSION:\s*(.+?)\s*,\s*ANSWER:", re.IGNORECASE | re.DOTALL)
_ANSWER_RE = re.compile(r"ANSWER:\s*(.+)", re.IGNORECASE | re.DOTALL)
_ANSWER_PREFIX_RE = re.compile(r"^(Answer|Result|Solution):\s*", re.IGNORECASE)


@dataclass(frozen=True)
class VisionReply:
    expression: str
    answer: str


def _strip_markdown(s: str) -> str:
    return s.replace("**", "").replace("`", "").strip()


def parse_reply(text: Optional[str]) -> Optional[VisionReply]:
    """Parse the fixed-format recognition reply; None for status words and junk."""
    if not text:
        return None
    cleaned = _strip_markdown(text)
    if cleaned.upper().startswith(_STATUS_REPLIES):
        return None
    em = _EXPRESSION_RE.search(cleaned)
    am = _ANSWER_RE.search(cleaned)
    if not em or not am:
        return None
    expression = em.group(1).strip()
    answer = am.group(1).strip().splitlines()[0].strip()
    if not expression or not answer or answer == "?":
        return None
    return VisionReply(expression=expression, answer=answer)


def clean_answer(text: Optional[str]) -> str:
    answer = _strip_markdown(text or "")
    answer = _ANSWER_PREFIX_RE.sub("", answer)
    return answer or "?"


def _post_sync(*, url: str, headers: dict[str, str], timeout_s: float, payload: dict) -> dict:
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:
        raw = resp.read().decode("utf-8")
        return json.loads(raw)


class VisionServiceClient:
    """Chat-completions client used both for image OCR+solve and text-only solving."""

    name = BACKEND_VISION

    def __init__(
        self,
        base_url: Optional[str] = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        *,
        model: str = DEFAULT_MODEL,
        timeout_s: float = 20.0,
    ) -> None:
        self.base_url = base_url or ""
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def _complete(self, messages: list[dict], *, max_tokens: int) -> str:
        if not self.configured:
            raise ConfigurationMissing("vision service URL not configured", backend=self.name)
        url = self.base_url.rstrip("/") + "/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"model": self.model, "messages": messages, "max_tokens": max_tokens}
        try:
            resp = await asyncio.to_thread(
                _post_sync, url=url, headers=headers, timeout_s=self.timeout_s, payload=payload
            )
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace") if e.fp else ""
            if e.code == 401:
                raise AuthorizationFailure(f"vision service unauthorized: {detail}", backend=self.name) from e
            raise TransientServiceError(
                f"vision service error {e.code}: {detail}", backend=self.name, status=e.code
            ) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise TransientServiceError(f"vision service unreachable: {e}", backend=self.name) from e
        except ValueError as e:
            raise TransientServiceError(f"vision service bad response: {e}", backend=self.name) from e

        try:
            content = resp["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransientServiceError(f"vision service bad response: {e}", backend=self.name) from e
        return content if isinstance(content, str) else ""

    async def recognize_image(self, data_url: str) -> Optional[VisionReply]:
        if not data_url.startswith("data:image/"):
            raise ValueError("image must be a base64 data URL (data:image/...)")
        content = await self._complete(
            [
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": data_url}},
                        {"type": "text", "text": RECOGNIZE_PROMPT},
                    ],
                }
            ],
            max_tokens=100,
        )
        return parse_reply(content)

    async def solve(self, expression: str, variables: Optional[dict[str, str]] = None) -> str:
        context = ""
        if variables:
            context = "\n\nKnown variables:\n" + "\n".join(f"{k} = {v}" for k, v in variables.items())
        content = await self._complete(
            [
                {"role": "system", "content": SOLVE_PROMPT},
                {"role": "user", "content": f"Solve: {expression}{context}"},
            ],
            max_tokens=100,
        )
        return clean_answer(content)
