"""
Local OCR using Tesseract (no network, no waiting).
Returns word boxes + full text + page size for the layout classifier.
"""

import io
import logging
from PIL import Image, ImageOps, ImageEnhance
import pytesseract
from pytesseract import Output

from ..config import LOG_OCR_WORDS
from ..models import BoundingBox, PageDimensions, RecognitionResult, RecognizedWord

log = logging.getLogger(__name__)


def init_tesseract(tesseract_cmd: str = "") -> str:
    """
    Point pytesseract at the binary and make sure it runs.
    Returns the Tesseract version string; raises if the binary is missing.
    """
    # Allow explicit tesseract path (Windows)
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
    version = str(pytesseract.get_tesseract_version())
    log.info("Tesseract ready (v%s)", version)
    return version


def _preprocess(img: Image.Image) -> Image.Image:
    """Grayscale + contrast/sharpen; upscale small screenshots for better OCR."""
    gray = ImageOps.grayscale(img)
    gray = ImageEnhance.Contrast(gray).enhance(1.6)
    gray = ImageEnhance.Sharpness(gray).enhance(1.2)
    w, h = gray.size
    if max(w, h) < 1200:
        gray = gray.resize((w * 2, h * 2))
    return gray


def words_from_data(data: dict) -> tuple[list[RecognizedWord], str, float | None]:
    """
    Turn pytesseract's image_to_data dict into words, line-joined text and
    the mean word confidence (0..100).
    """
    words: list[RecognizedWord] = []
    lines: dict[tuple, list[str]] = {}
    confs: list[float] = []

    for i, raw in enumerate(data.get("text", [])):
        text = (raw or "").strip()
        if not text:
            continue
        left, top = float(data["left"][i]), float(data["top"][i])
        width, height = float(data["width"][i]), float(data["height"][i])
        words.append(RecognizedWord(
            text=text,
            bbox=BoundingBox(x0=left, y0=top, x1=left + width, y1=top + height),
        ))
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(text)
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            continue
        if conf >= 0:
            confs.append(conf)

    full_text = "\n".join(" ".join(parts) for parts in lines.values())
    mean_conf = sum(confs) / len(confs) if confs else None
    return words, full_text, mean_conf


def extract(image_bytes: bytes) -> RecognitionResult:
    """
    Run Tesseract over the screenshot. Raises on undecodable images or OCR
    failure so the caller can escalate with the real error.
    """
    img = Image.open(io.BytesIO(image_bytes))
    img = _preprocess(img)

    # --psm 11: sparse text, keeps right-aligned buttons as separate words
    data = pytesseract.image_to_data(img, config="--psm 11", output_type=Output.DICT)
    words, text, conf = words_from_data(data)
    if LOG_OCR_WORDS:
        for word in words:
            log.debug("OCR word %r at (%.0f, %.0f)", word.text, word.bbox.center_x, word.bbox.center_y)

    w, h = img.size
    return RecognitionResult(
        words=words,
        text=text,
        confidence=conf,
        dimensions=PageDimensions.from_size(w, h),
        engine="tesseract",
    )
