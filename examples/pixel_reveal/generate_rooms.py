#!/usr/bin/env python3
"""
Generate empty pixel-canvas rooms for the pixel_reveal example.

Creates one <room_id>.json file per room under ./rooms, each with an empty
canvas. A few rooms get a different prefix so the id_prefix
filter in settings.yaml has something to exclude.

Usage:
    python generate_rooms.py          # 40 rooms
    python generate_rooms.py 200      # 200 rooms
"""

import sys
from pathlib import Path

from roomflush.plugins.stores import JsonDirectoryStore


def generate_rooms(num_rooms: int = 40, output_dir: Path | None = None) -> None:
    """Create canvas rooms plus a handful of unrelated rooms."""
    if output_dir is None:
        output_dir = Path(__file__).parent / "rooms"

    store = JsonDirectoryStore(output_dir)
    for i in range(num_rooms):
        store.create(f"sveltekit-pixel-{i:04d}", metadata={"kind": "canvas"})
    for i in range(3):
        store.create(f"chat-{i:04d}", root={"messages": []}, metadata={"kind": "chat"})

    print(f"Generated {num_rooms:,} canvas rooms in {output_dir}")  # noqa: T201


if __name__ == "__main__":
    num_rooms = int(sys.argv[1]) if len(sys.argv) > 1 else 40

    if num_rooms < 1 or num_rooms > 100_000:
        print("Error: Room count must be between 1 and 100,000", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    generate_rooms(num_rooms)
