#!/usr/bin/env python3
"""Profile extract_colors.py to identify performance bottlenecks."""

import cProfile
import pstats
import io
import sys
import time
from pathlib import Path

from extract_colors import (
    DEFAULT_LEAF_COUNT, DEFAULT_PALETTE_SIZE,
    load_image, detect_background_color, quantize_pixels,
    choose_palette_size, cluster_colors, filter_palette,
)


def profile_image(image_path: str, num_colors: int = DEFAULT_PALETTE_SIZE,
                  verbose: bool = True):
    """Time each pipeline stage for a single image."""

    if verbose:
        print(f"\n{'='*60}")
        print(f"Profiling: {Path(image_path).name}")
        print(f"{'='*60}")

    timings = {}

    start = time.perf_counter()
    rgb, opaque = load_image(image_path)
    timings['load'] = time.perf_counter() - start

    start = time.perf_counter()
    background = detect_background_color(rgb, opaque)
    timings['background'] = time.perf_counter() - start

    pixels = rgb[opaque]
    start = time.perf_counter()
    weighted = quantize_pixels(pixels, leaf_count=DEFAULT_LEAF_COUNT)
    timings['quantize'] = time.perf_counter() - start

    if verbose:
        print(f"  Opaque pixels: {len(pixels):,}")
        print(f"  Quantized colors: {len(weighted):,}")

    start = time.perf_counter()
    colors = cluster_colors(weighted, choose_palette_size(weighted, num_colors), rng=0)
    timings['cluster'] = time.perf_counter() - start

    start = time.perf_counter()
    colors = filter_palette(colors, background=background)
    timings['filter'] = time.perf_counter() - start

    total = sum(timings.values())
    timings['total'] = total

    if verbose:
        print(f"\nStage timings:")
        for stage, t in timings.items():
            pct = (t / total * 100) if stage != 'total' else 100
            print(f"  {stage:20s}: {t:6.3f}s ({pct:5.1f}%)")

    return timings, colors


def detailed_profile(image_path: str):
    """Run detailed cProfile on quantization and clustering (the compute stages)."""

    print(f"\n{'='*60}")
    print(f"Detailed profile of quantize_pixels() + cluster_colors()")
    print(f"{'='*60}")

    # Load pixels first (outside profiling)
    rgb, opaque = load_image(image_path)
    pixels = rgb[opaque]

    profiler = cProfile.Profile()
    profiler.enable()
    weighted = quantize_pixels(pixels)
    colors = cluster_colors(weighted, choose_palette_size(weighted, DEFAULT_PALETTE_SIZE), rng=0)
    profiler.disable()

    stream = io.StringIO()
    stats = pstats.Stats(profiler, stream=stream)
    stats.sort_stats('cumulative')
    stats.print_stats(30)  # Top 30 functions

    print(stream.getvalue())

    return colors


def main():
    import argparse

    parser = argparse.ArgumentParser(
        description='Time the palette pipeline stages for one or more images.'
    )
    parser.add_argument('images', nargs='+', help='Image files to profile')
    parser.add_argument(
        '--detailed',
        action='store_true',
        help='Print a cProfile breakdown for the first image'
    )
    args = parser.parse_args()

    images = [Path(p) for p in args.images]
    missing = [p for p in images if not p.is_file()]
    if missing:
        print(f"Error: Image not found: {missing[0]}", file=sys.stderr)
        sys.exit(1)

    all_timings = []
    for img in images:
        timings, colors = profile_image(str(img))
        all_timings.append((img.name, timings, len(colors)))

    print(f"\n{'='*60}")
    print("SUMMARY")
    print(f"{'='*60}")
    print(f"{'Image':<35} {'Colors':>8} {'Quantize':>9} {'Total':>8}")
    print("-" * 60)
    for name, timings, count in all_timings:
        print(f"{name:<35} {count:>8} {timings['quantize']:>8.3f}s {timings['total']:>7.3f}s")

    if args.detailed:
        detailed_profile(str(images[0]))


if __name__ == "__main__":
    main()
