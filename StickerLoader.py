import asyncio
import base64
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# --- Loader Limits ---
MAX_FILE_BYTES: int = 10 * 1024 * 1024   # 10MB
MAX_DIMENSION: int = 4000                # Pixels, either side
HTTP_TIMEOUT_S: float = 10.0


class StickerLoadError(Exception):
    """Raised when a sticker identifier cannot be turned into an image."""


@dataclass(frozen=True)
class StickerAsset:
    """A decoded sticker: BGRA pixels plus where they came from."""
    identifier: str
    image: np.ndarray

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def aspect_ratio(self) -> float:
        """Intrinsic height / width."""
        return self.height / self.width


class StickerLoader:
    """
    Turns an opaque sticker identifier into a StickerAsset.

    Supported identifiers:
        - plain filesystem paths and file:// URLs
        - http:// and https:// URLs
        - data: URIs (base64 or percent-encoded)

    Decoding is blocking, so `load` pushes it onto a worker thread and the
    frame loop keeps running while the image arrives.
    """

    def __init__(self, max_bytes: int = MAX_FILE_BYTES, timeout_s: float = HTTP_TIMEOUT_S) -> None:
        self.max_bytes: int = max_bytes
        self.timeout_s: float = timeout_s

    async def load(self, identifier: str) -> StickerAsset:
        return await asyncio.to_thread(self.load_sync, identifier)

    def load_sync(self, identifier: str) -> StickerAsset:
        raw = self._read_bytes(identifier)
        if len(raw) > self.max_bytes:
            raise StickerLoadError(f"File too large (max {self.max_bytes // (1024 * 1024)}MB)")
        image = decode_image(raw)
        logger.info("Sticker loaded: %s (%dx%d)", _short(identifier), image.shape[1], image.shape[0])
        return StickerAsset(identifier=identifier, image=image)

    def _read_bytes(self, identifier: str) -> bytes:
        if not identifier:
            raise StickerLoadError("Empty sticker identifier")

        if identifier.startswith("data:"):
            return _decode_data_uri(identifier)

        parsed = urllib.parse.urlparse(identifier)
        if parsed.scheme in ("http", "https"):
            try:
                with urllib.request.urlopen(identifier, timeout=self.timeout_s) as response:
                    return response.read(self.max_bytes + 1)
            except (urllib.error.URLError, OSError) as e:
                raise StickerLoadError(f"Failed to fetch {identifier}: {e}") from e

        path = urllib.request.url2pathname(parsed.path) if parsed.scheme == "file" else identifier
        if not os.path.isfile(path):
            raise StickerLoadError(f"Sticker file not found: {path}")
        if os.path.getsize(path) > self.max_bytes:
            raise StickerLoadError(f"File too large (max {self.max_bytes // (1024 * 1024)}MB): {path}")
        with open(path, "rb") as f:
            return f.read()


def decode_image(raw: bytes) -> np.ndarray:
    """Decodes encoded image bytes into a uint8 BGRA array."""
    img = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise StickerLoadError("Failed to decode image")

    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)

    h, w = img.shape[:2]
    if not (1 <= w <= MAX_DIMENSION and 1 <= h <= MAX_DIMENSION):
        raise StickerLoadError(f"Invalid dimensions ({w}x{h})")

    # Ensure BGRA
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
    elif img.ndim == 3 and img.shape[2] == 3:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
    elif img.ndim != 3 or img.shape[2] != 4:
        raise StickerLoadError("Unsupported image format")
    return img


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise StickerLoadError("Malformed data URI")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(payload, validate=True)
        return urllib.parse.unquote_to_bytes(payload)
    except ValueError as e:
        raise StickerLoadError(f"Malformed data URI payload: {e}") from e


def _short(identifier: str) -> str:
    return identifier if len(identifier) <= 64 else identifier[:61] + "..."
