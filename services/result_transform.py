"""
Post-processing of captured script output.

make_tweetable turns raw stdout into text that is safe to post: mentions are
always neutralized with a zero-width space so a script cannot ping people, and
in untrue (redaction) mode hashtags and links are neutralized too. The result
is truncated to the post length limit. The transform is idempotent.

decode_images turns the sandbox's base64 payloads into Pillow images,
skipping (and logging) anything that is not a decodable image.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_POST_LENGTH = 280

ZWSP = "\u200b"

_MENTION = re.compile(rf"@(?!{ZWSP})")
_HASHTAG = re.compile(rf"#(?!{ZWSP})")
_URL_SCHEME = re.compile(r"([a-z][a-z0-9+.-]*)(?=://)", re.IGNORECASE)


def make_tweetable(text: str, untrue: bool = False) -> str:
    """
    Normalize captured output for posting.

    Args:
        text: Raw captured stdout
        untrue: Redaction policy flag

    Returns:
        Text of at most MAX_POST_LENGTH characters
    """
    if not text:
        return ""

    result = text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    result = _MENTION.sub(f"@{ZWSP}", result)

    if untrue:
        result = _HASHTAG.sub(f"#{ZWSP}", result)
        result = _URL_SCHEME.sub(rf"\1{ZWSP}", result)

    return result[:MAX_POST_LENGTH].rstrip()


@dataclass
class DecodedImage:
    """A decoded raster image and the position of its payload."""

    index: int
    image: Image.Image


def decode_image(payload: str) -> Image.Image:
    """Decode one base64 payload. Raises ValueError on any failure."""
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64: {exc}") from exc

    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ValueError(f"not a decodable image: {exc}") from exc
    return image


def decode_images(payloads: Sequence[str]) -> list[DecodedImage]:
    """Decode every payload independently; bad payloads are skipped."""
    images: list[DecodedImage] = []
    for index, payload in enumerate(payloads):
        try:
            images.append(DecodedImage(index=index, image=decode_image(payload)))
        except ValueError as exc:
            # e.g. a video or an arbitrary byte stream written to /images
            logger.warning("Skipping image payload %d: %s", index, exc)
    return images


__all__ = [
    "MAX_POST_LENGTH",
    "DecodedImage",
    "decode_image",
    "decode_images",
    "make_tweetable",
]
