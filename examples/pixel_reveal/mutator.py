"""Progressive pixel reveal.

Paints a 16x16 picture into each canvas room one pixel at a time,
in shuffled order, pausing 5ms between pixels so viewers watch it appear.
Flushing is left to the engine (see flush_interval_ms in settings.yaml).
"""

from __future__ import annotations

import random

from roomflush.engine import MutationContext

GRID_SIZE = 16

# Pixel art palettes: (background, foreground, accent)
PALETTES: tuple[tuple[str, str, str], ...] = (
    ("#1d2b53", "#ff004d", "#ffec27"),
    ("#000000", "#29adff", "#fff1e8"),
    ("#ffccaa", "#ab5236", "#008751"),
)


def picture(palette: tuple[str, str, str]) -> list[str]:
    """A 16x16 ring with a dot in the middle, row-major."""
    background, foreground, accent = palette
    center = (GRID_SIZE - 1) / 2
    pixels = []
    for y in range(GRID_SIZE):
        for x in range(GRID_SIZE):
            distance = ((x - center) ** 2 + (y - center) ** 2) ** 0.5
            if distance < 2:
                pixels.append(accent)
            elif 5 <= distance < 7:
                pixels.append(foreground)
            else:
                pixels.append(background)
    return pixels


async def paint(ctx: MutationContext) -> None:
    if ctx.document.metadata.get("kind") != "canvas":
        raise ValueError(f"Room {ctx.document_id} is not a canvas room")

    pixels = picture(random.choice(PALETTES))
    order = list(range(len(pixels)))
    random.shuffle(order)

    for index in order:
        x, y = index % GRID_SIZE, index // GRID_SIZE
        ctx.write(f"0_{y}_{x}", pixels[index])
        await ctx.pace(5)
