from io import BytesIO

from PIL import Image

from .errors import EncodeError

DEFAULT_JPEG_QUALITY = 80


def encode(image: Image.Image, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Compress a page image to baseline JPEG.

    No optimizer or progressive passes, so identical pixels and quality always
    produce identical bytes.
    """
    if not 1 <= quality <= 100:
        raise EncodeError(f"JPEG quality must be within 1..100, got {quality}")
    try:
        if image.mode != "RGB":
            image = image.convert("RGB")
        buf = BytesIO()
        image.save(buf, format="JPEG", quality=quality, optimize=False, progressive=False)
    except (OSError, ValueError, AttributeError) as exc:
        raise EncodeError(f"JPEG encoding failed: {exc}") from exc
    return buf.getvalue()
