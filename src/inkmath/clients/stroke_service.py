from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Optional, Sequence

from inkmath.engine.errors import AuthorizationFailure, ConfigurationMissing, TransientServiceError
from inkmath.protocol.constants import BACKEND_STROKE
from inkmath.protocol.messages import Stroke

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://cloud.myscript.com/api/v4.0/iink/batch"


def compute_hmac(message: str, application_key: str, hmac_key: str) -> str:
    """Hex HMAC-SHA-512 of `message`, keyed by application key + hmac key."""
    key = f"{application_key}{hmac_key}".encode("utf-8")
    return hmac.new(key, message.encode("utf-8"), hashlib.sha512).hexdigest()


def extract_label(data: Any) -> Optional[str]:
    """
    Pull the LaTeX label out of a JIIX response.

    `expressions[0].label` first, then a depth-first walk over
    expressions/items/children for the first `latex` or `label`.
    """
    if not isinstance(data, dict):
        return None
    exprs = data.get("expressions")
    if isinstance(exprs, list) and exprs and isinstance(exprs[0], dict):
        label = exprs[0].get("label") or exprs[0].get("latex")
        if isinstance(label, str) and label:
            return label
    label = data.get("latex") or data.get("label")
    if isinstance(label, str) and label:
        return label
    for key in ("expressions", "items", "children"):
        children = data.get(key)
        if not isinstance(children, list):
            continue
        for child in children:
            found = extract_label(child)
            if found:
                return found
    return None


def _post_sync(*, url: str, body: bytes, headers: dict[str, str], timeout_s: float) -> dict:
    req = urllib.request.Request(url, data=body, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:
        raw = resp.read().decode("utf-8")
        return json.loads(raw)


class StrokeServiceClient:
    """HMAC-signed client for the batch stroke (handwriting) recognition service."""

    name = BACKEND_STROKE

    def __init__(
        self,
        application_key: Optional[str],
        hmac_key: Optional[str],
        *,
        url: str = DEFAULT_URL,
        timeout_s: float = 15.0,
        dpi: int = 96,
    ) -> None:
        self.application_key = application_key or ""
        self.hmac_key = hmac_key or ""
        self.url = url
        self.timeout_s = timeout_s
        self.dpi = dpi

    @property
    def configured(self) -> bool:
        return bool(self.application_key and self.hmac_key)

    def build_payload(self, strokes: Sequence[Stroke]) -> dict:
        return {
            "xDPI": self.dpi,
            "yDPI": self.dpi,
            "contentType": "Math",
            "conversionState": "DIGITAL_EDIT",
            "strokeGroups": [{"strokes": [s.to_service_dict() for s in strokes]}],
        }

    def sign(self, body: str) -> str:
        return compute_hmac(body, self.application_key, self.hmac_key)

    async def recognize(self, strokes: Sequence[Stroke]) -> Optional[str]:
        """Recognize strokes as math; returns the LaTeX label or None."""
        if not self.configured:
            raise ConfigurationMissing("stroke service keys not configured", backend=self.name)
        if not strokes:
            return None

        body = json.dumps(self.build_payload(strokes), separators=(",", ":"))
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json,application/vnd.myscript.jiix",
            "applicationKey": self.application_key,
            "hmac": self.sign(body),
        }
        try:
            data = await asyncio.to_thread(
                _post_sync,
                url=self.url,
                body=body.encode("utf-8"),
                headers=headers,
                timeout_s=self.timeout_s,
            )
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace") if e.fp else ""
            if e.code == 401:
                raise AuthorizationFailure(f"stroke service unauthorized: {detail}", backend=self.name) from e
            raise TransientServiceError(
                f"stroke service error {e.code}: {detail}", backend=self.name, status=e.code
            ) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise TransientServiceError(f"stroke service unreachable: {e}", backend=self.name) from e
        except ValueError as e:
            raise TransientServiceError(f"stroke service bad response: {e}", backend=self.name) from e

        return extract_label(data)
