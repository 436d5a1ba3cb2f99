"""
Sixel rendering for the test-mode report.

Images are scaled down to fit max_width, quantized to a palette with Pillow
and emitted as a DEC sixel sequence that terminals such as xterm (-ti vt340),
mlterm, foot and WezTerm display inline.
"""

from __future__ import annotations

from itertools import groupby

from PIL import Image

SIXEL_START = "\x1bPq"
SIXEL_END = "\x1b\\"

DEFAULT_MAX_WIDTH = 800
DEFAULT_MAX_COLORS = 256


def _run_length(data: list[int]) -> str:
    """Encode sixel values, compressing runs longer than three."""
    parts: list[str] = []
    for value, run in groupby(data):
        count = len(list(run))
        char = chr(63 + value)
        if count > 3:
            parts.append(f"!{count}{char}")
        else:
            parts.append(char * count)
    return "".join(parts)


def encode_sixel(
    image: Image.Image,
    *,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_colors: int = DEFAULT_MAX_COLORS,
) -> str:
    """Return the sixel escape sequence for an image."""
    rgb = image.convert("RGB")
    if rgb.width > max_width:
        height = max(1, round(rgb.height * max_width / rgb.width))
        rgb = rgb.resize((max_width, height))

    quantized = rgb.quantize(colors=max_colors)
    width, height = quantized.size
    palette = quantized.getpalette() or []
    color_count = min(max_colors, len(palette) // 3)
    pixels = quantized.load()

    out = [SIXEL_START, f'"1;1;{width};{height}']
    for i in range(color_count):
        r, g, b = palette[3 * i:3 * i + 3]
        out.append(f"#{i};2;{r * 100 // 255};{g * 100 // 255};{b * 100 // 255}")

    for top in range(0, height, 6):
        rows = min(6, height - top)
        bands: dict[int, list[int]] = {}
        for x in range(width):
            for dy in range(rows):
                color = pixels[x, top + dy]
                bits = bands.get(color)
                if bits is None:
                    bits = bands[color] = [0] * width
                bits[x] |= 1 << dy

        layers = [f"#{color}{_run_length(bits)}" for color, bits in sorted(bands.items())]
        out.append("$".join(layers))
        out.append("-")

    out.append(SIXEL_END)
    return "".join(out)


__all__ = ["encode_sixel"]
