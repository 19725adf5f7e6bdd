import asyncio
import threading
import time

import pytest

from followcheck.models import RecognitionResult
from followcheck.services import local_ocr
from followcheck.services.recognition import RecognitionEngine


@pytest.fixture
def fake_tesseract(monkeypatch):
    calls = []
    lock = threading.Lock()

    def init(cmd=""):
        with lock:
            calls.append(cmd)
        time.sleep(0.05)
        return "5.3.0"

    monkeypatch.setattr(local_ocr, "init_tesseract", init)
    return calls


class FakeVision:
    def __init__(self):
        self.calls = 0

    async def extract(self, image_bytes):
        self.calls += 1
        return RecognitionResult(text="from vision", engine="openai")

    def close(self):
        pass


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        RecognitionEngine(mode="magic")


def test_openai_mode_needs_key():
    with pytest.raises(ValueError):
        RecognitionEngine(mode="openai", openai_api_key="")


def test_concurrent_first_use_initializes_once(fake_tesseract):
    engine = RecognitionEngine(mode="local", tesseract_cmd="/usr/bin/tesseract")

    async def run():
        await asyncio.gather(*(engine.ensure_ready() for _ in range(5)))

    asyncio.run(run())
    assert fake_tesseract == ["/usr/bin/tesseract"]
    assert engine.ready


def test_local_failure_without_fallback_raises(fake_tesseract, monkeypatch):
    def boom(image_bytes):
        raise OSError("cannot identify image file")

    monkeypatch.setattr(local_ocr, "extract", boom)
    engine = RecognitionEngine(mode="local")
    with pytest.raises(OSError, match="cannot identify"):
        asyncio.run(engine.recognize(b"junk"))


def test_hybrid_falls_back_to_vision(fake_tesseract, monkeypatch):
    def boom(image_bytes):
        raise RuntimeError("tesseract crashed")

    monkeypatch.setattr(local_ocr, "extract", boom)
    engine = RecognitionEngine(mode="hybrid")
    vision = FakeVision()

    async def run():
        await engine.ensure_ready()
        engine.vision = vision
        return await engine.recognize(b"img")

    result = asyncio.run(run())
    assert result.engine == "openai"
    assert vision.calls == 1


def test_hybrid_empty_read_falls_back_to_vision(fake_tesseract, monkeypatch):
    monkeypatch.setattr(local_ocr, "extract", lambda b: RecognitionResult(engine="tesseract"))
    engine = RecognitionEngine(mode="hybrid")
    vision = FakeVision()

    async def run():
        await engine.ensure_ready()
        engine.vision = vision
        return await engine.recognize(b"img")

    assert asyncio.run(run()).text == "from vision"


def test_local_result_is_returned(fake_tesseract, monkeypatch):
    monkeypatch.setattr(local_ocr, "extract", lambda b: RecognitionResult(text="hi", engine="tesseract"))
    engine = RecognitionEngine(mode="local")
    result = asyncio.run(engine.recognize(b"img"))
    assert result.engine == "tesseract"
    assert result.text == "hi"


def test_close_resets(fake_tesseract):
    engine = RecognitionEngine(mode="local")

    async def run():
        await engine.ensure_ready()
        await engine.close()

    asyncio.run(run())
    assert not engine.ready
