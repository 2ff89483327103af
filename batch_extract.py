#!/usr/bin/env python3
"""Batch extract palettes from a directory of images."""

import argparse
import sys
import time
from pathlib import Path

from extract_colors import DEFAULT_MAX_DIMENSION, DEFAULT_PALETTE_SIZE, extract_palette


def find_images(directory: Path) -> list[Path]:
    """Find all image files in directory."""
    extensions = {'.jpg', '.jpeg', '.png', '.webp'}
    return sorted(p for p in directory.iterdir() if p.suffix.lower() in extensions)


def main():
    parser = argparse.ArgumentParser(
        description='Batch extract color palettes from images.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Directory containing images to analyze'
    )
    parser.add_argument(
        '--colors', '-n',
        type=int,
        default=DEFAULT_PALETTE_SIZE,
        help=f'Number of palette colors (default {DEFAULT_PALETTE_SIZE})'
    )
    parser.add_argument(
        '--no-downscale',
        action='store_true',
        help=f'Process at full resolution instead of downscaling to {DEFAULT_MAX_DIMENSION}px'
    )

    args = parser.parse_args()

    input_dir = Path(args.input)

    if not input_dir.is_dir():
        print(f"Error: Input directory not found: {input_dir}", file=sys.stderr)
        sys.exit(2)

    images = find_images(input_dir)
    if not images:
        print(f"No images found in {input_dir}", file=sys.stderr)
        sys.exit(2)

    total = len(images)
    succeeded = 0
    failed = []
    max_dimension = None if args.no_downscale else DEFAULT_MAX_DIMENSION

    batch_start = time.perf_counter()

    for i, image_path in enumerate(images, 1):
        try:
            img_start = time.perf_counter()
            result = extract_palette(str(image_path), num_colors=args.colors,
                                     max_dimension=max_dimension)
            img_elapsed = time.perf_counter() - img_start

            swatches = ' '.join(color.hex for color in result.colors)
            print(f"[{i}/{total}] {image_path.name} → {swatches} ({img_elapsed:.2f}s)")
            succeeded += 1

        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            print(f"[{i}/{total}] {image_path.name} → ERROR: {error_msg}", file=sys.stderr)
            failed.append((image_path.name, error_msg))

    batch_elapsed = time.perf_counter() - batch_start

    # Summary
    print()
    print(f"Completed: {succeeded}/{total} succeeded in {batch_elapsed:.2f}s")
    if succeeded > 0:
        print(f"Average: {batch_elapsed / succeeded:.2f}s per image")
    if failed:
        print(f"Failed ({len(failed)}):")
        for name, error in failed:
            print(f"  - {name}: {error}")
        sys.exit(1)


if __name__ == '__main__':
    main()
