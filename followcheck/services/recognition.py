"""
Process-wide recognition engine.

Built once in main.py and shared by every update. The first recognize()
call initializes Tesseract (and the OpenAI client when configured) behind a
lock so concurrent first uses only start one initialization. The engine is
reused for the life of the process and closed on shutdown.
"""

import asyncio
import logging

from ..models import RecognitionResult
from . import local_ocr
from .vision import VisionClient

log = logging.getLogger(__name__)

MODES = ("local", "hybrid", "openai")


class RecognitionEngine:
    def __init__(
        self,
        mode: str = "hybrid",
        tesseract_cmd: str = "",
        openai_api_key: str = "",
        openai_model: str = "gpt-4o-mini",
        openai_limits: dict | None = None,
    ):
        if mode not in MODES:
            raise ValueError(f"Unknown OCR_MODE {mode!r}; expected one of {', '.join(MODES)}")
        if mode == "openai" and not openai_api_key:
            raise ValueError("OCR_MODE=openai needs OPENAI_API_KEY")
        self.mode = mode
        self.tesseract_cmd = tesseract_cmd
        self.openai_api_key = openai_api_key
        self.openai_model = openai_model
        self.openai_limits = openai_limits or {}

        self.vision: VisionClient | None = None
        self._ready = False
        self._init_lock = asyncio.Lock()

    @property
    def uses_local(self) -> bool:
        return self.mode in ("local", "hybrid")

    @property
    def uses_vision(self) -> bool:
        return self.mode == "openai" or (self.mode == "hybrid" and bool(self.openai_api_key))

    @property
    def ready(self) -> bool:
        return self._ready

    async def ensure_ready(self) -> None:
        if self._ready:
            return
        async with self._init_lock:
            if self._ready:
                return
            log.info("Initializing recognition engine (mode=%s)", self.mode)
            if self.uses_local:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, local_ocr.init_tesseract, self.tesseract_cmd)
            if self.uses_vision and self.vision is None:
                self.vision = VisionClient(
                    api_key=self.openai_api_key, model=self.openai_model, **self.openai_limits
                )
            self._ready = True

    async def recognize(self, image_bytes: bytes) -> RecognitionResult:
        """
        Raises whatever the underlying engine raised when no engine produced
        a result; the orchestrator turns that into an error escalation.
        """
        await self.ensure_ready()

        if self.mode == "openai":
            return await self.vision.extract(image_bytes)

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, local_ocr.extract, image_bytes)
        except Exception as e:
            if self.vision is None:
                raise
            log.warning("Local OCR failed (%s); falling back to vision", e)
            return await self.vision.extract(image_bytes)

        if not result.words and self.vision is not None:
            log.info("Local OCR read nothing; falling back to vision")
            return await self.vision.extract(image_bytes)
        return result

    async def close(self) -> None:
        if self.vision is not None:
            self.vision.close()
            self.vision = None
        self._ready = False
