"""
OpenAI vision client: JSON word boxes, dual throttling and Retry-After handling.
"""

import asyncio
import base64
import io
import json
import logging
import re
import time
from typing import Optional

from openai import OpenAI
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field, ValidationError

from ..models import BoundingBox, PageDimensions, RecognitionResult, RecognizedWord

log = logging.getLogger(__name__)


class VisionError(RuntimeError):
    pass


class _VisionWord(BaseModel):
    text: str
    box: list[float] = Field(min_length=4, max_length=4)


class _VisionPayload(BaseModel):
    words: list[_VisionWord] = Field(default_factory=list)
    text: str = ""
    confidence: Optional[float] = None


def _guess_mime(b: bytes) -> str:
    if b.startswith(b"\x89PNG\r\n\x1a\n"): return "image/png"
    if b[0:3] == b"\xff\xd8\xff": return "image/jpeg"
    return "image/jpeg"

def _to_data_url(image_bytes: bytes) -> str:
    mime = _guess_mime(image_bytes)
    b64 = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime};base64,{b64}"

def _strip_code_fences(text: str) -> str:
    t = text.strip()
    if t.startswith("```"):
        nl = t.find("\n")
        if nl != -1: t = t[nl + 1 :]
        if t.endswith("```"): t = t[:-3]
    return t.strip()

def _parse_retry_after_seconds(msg: str) -> Optional[float]:
    msg = str(msg)
    m = re.search(r"try again in\s*(\d+)h(\d+)m(\d+)s", msg, re.I)
    if m: return int(m.group(1))*3600 + int(m.group(2))*60 + int(m.group(3))
    m = re.search(r"try again in\s*(\d+)m(\d+)s", msg, re.I)
    if m: return int(m.group(1))*60 + int(m.group(2))
    m = re.search(r"try again in\s*(\d+)m\b", msg, re.I)
    if m: return int(m.group(1))*60
    m = re.search(r"try again in\s*(\d+(?:\.\d+)?)s\b", msg, re.I)
    if m: return float(m.group(1))
    return None

def _image_size(image_bytes: bytes) -> PageDimensions:
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            return PageDimensions.from_size(*img.size)
    except (UnidentifiedImageError, OSError):
        return PageDimensions()


def payload_to_result(payload: _VisionPayload, dims: PageDimensions) -> RecognitionResult:
    words = [
        RecognizedWord(text=w.text, bbox=BoundingBox(x0=w.box[0], y0=w.box[1], x1=w.box[2], y1=w.box[3]))
        for w in payload.words
        if w.text.strip()
    ]
    text = payload.text or " ".join(w.text for w in words)
    conf = payload.confidence * 100 if payload.confidence is not None else None
    return RecognitionResult(words=words, text=text, confidence=conf, dimensions=dims, engine="openai")


class VisionClient:
    """OpenAI Chat Completions for vision OCR with robust backoff."""
    def __init__(self, api_key: str, model: str = "gpt-4o-mini",
                 max_rpm: float = 3.0, max_tpm: float = 100000.0, tokens_per_image: float = 900.0):
        self.client = OpenAI(api_key=api_key)
        self.model = model or "gpt-4o-mini"

        interval_by_rpm = (60.0 / max_rpm) if max_rpm > 0 else 0.0
        interval_by_tpm = (tokens_per_image / max_tpm) * 60.0 if max_tpm > 0 else 0.0
        self.min_interval = max(interval_by_rpm, interval_by_tpm)

        self._throttle_lock = asyncio.Lock()
        self._last_call_ts = 0.0
        self._next_allowed_ts = 0.0   # set when server tells us to retry later

    def estimate_wait_seconds(self) -> float:
        now = time.monotonic()
        wait_due_to_interval = max(0.0, self.min_interval - (now - self._last_call_ts))
        wait_due_to_server = max(0.0, self._next_allowed_ts - now)
        return max(wait_due_to_interval, wait_due_to_server)

    async def _throttle_once(self):
        async with self._throttle_lock:
            wait = self.estimate_wait_seconds()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_call_ts = time.monotonic()

    async def extract(self, image_bytes: bytes) -> RecognitionResult:
        await self._throttle_once()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._extract_sync, image_bytes)

    def close(self) -> None:
        self.client.close()

    def _extract_sync(self, image_bytes: bytes) -> RecognitionResult:
        dims = _image_size(image_bytes)
        data_url = _to_data_url(image_bytes)

        system_prompt = (
            "You are an OCR engine for X (Twitter) profile screenshots.\n"
            f"The image is {dims.width}x{dims.height} pixels.\n"
            'Return JSON with keys: "words" (list of {"text": str, "box": [x0, y0, x1, y1]} '
            "in pixel coordinates, one entry per visible word, top to bottom), "
            '"text" (all visible text, one line per row), '
            '"confidence" (0..1). Keep "@" and digits exactly as shown. '
            "Return ONLY JSON."
        )

        max_attempts = 5
        base_backoff = 20.0

        for attempt in range(1, max_attempts + 1):
            try:
                chat = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {
                            "role": "user",
                            "content": [
                                {"type": "text", "text": "List every word with its box. Output only JSON."},
                                {"type": "image_url", "image_url": {"url": data_url}},
                            ],
                        },
                    ],
                    temperature=0.0,
                    response_format={"type": "json_object"},
                )
            except Exception as e:
                msg = str(e)
                retry_after = _parse_retry_after_seconds(msg)

                resp = getattr(e, "response", None)
                headers = getattr(resp, "headers", None) or {}
                retry_after_hdr = headers.get("retry-after") or headers.get("Retry-After")
                if retry_after_hdr and not retry_after:
                    try:
                        retry_after = float(retry_after_hdr)
                    except ValueError:
                        retry_after = None

                if "Too Many Requests" in msg or "rate limit" in msg.lower() or "429" in msg:
                    if retry_after is None:
                        retry_after = base_backoff * (2 ** (attempt - 1))
                    self._next_allowed_ts = max(self._next_allowed_ts, time.monotonic() + retry_after)
                    log.warning("Vision rate-limited: attempt %d/%d, sleeping %.1fs",
                                attempt, max_attempts, retry_after)
                    time.sleep(retry_after)
                    continue

                raise VisionError(f"vision request failed: {e}") from e

            text = _strip_code_fences((chat.choices[0].message.content or "").strip())
            try:
                payload = _VisionPayload.model_validate(json.loads(text))
            except (json.JSONDecodeError, ValidationError) as e:
                raise VisionError(f"vision returned unusable JSON: {e}") from e

            log.info("Vision OK: %d words", len(payload.words))
            return payload_to_result(payload, dims)

        raise VisionError("vision exhausted retries due to rate limits")
