import hashlib
import io
from collections.abc import Iterable

from PIL import Image, UnidentifiedImageError

from docflow.rendering.exceptions import RenderError

_HASH_WIDTH = 9
_HASH_HEIGHT = 8


class ContentHasher:
    """Content identity for whole files and rendered pages."""

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        """Return the SHA-256 hex digest of the file bytes."""
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def hash_chunks(chunks: Iterable[bytes]) -> str:
        digest = hashlib.sha256()
        for chunk in chunks:
            digest.update(chunk)
        return digest.hexdigest()

    @staticmethod
    def fingerprint_image(image_bytes: bytes) -> str:
        """Return a 64-bit difference hash of a rendered page as 16 hex chars.

        Visually identical pages hash the same even when the PNG bytes differ,
        so reused pages can be spotted across uploads.
        """
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                small = image.convert("L").resize(
                    (_HASH_WIDTH, _HASH_HEIGHT), Image.Resampling.LANCZOS
                )
        except (UnidentifiedImageError, OSError) as exc:
            raise RenderError(f"Cannot fingerprint page image: {exc}") from exc

        pixels = small.tobytes()
        bits = 0
        for row in range(_HASH_HEIGHT):
            offset = row * _HASH_WIDTH
            for col in range(_HASH_WIDTH - 1):
                bits = (bits << 1) | int(pixels[offset + col] > pixels[offset + col + 1])
        return f"{bits:016x}"
