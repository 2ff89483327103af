#!/usr/bin/env python3
"""
Extract a representative color palette from an image.

Two stages: an octree quantizer compresses every pixel into a bounded set of
weighted colors, then a weighted K-means pass refines those into the final
palette. Colors close to the image's border/background color are dropped.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from PIL import Image

from clusterer import Clusterer
from quantizer import Quantizer


# =============================================================================
# Constants
# =============================================================================

# Image size limits (security: prevent decompression bombs)
MAX_IMAGE_PIXELS = 50_000_000  # 50 megapixels
MAX_IMAGE_DIMENSION = 10_000  # 10k pixels per side
DEFAULT_MAX_DIMENSION = 256  # Downscale target for the longest side
ALPHA_THRESHOLD = 128  # Pixels below this alpha are ignored

# Algorithm parameters
QUANTIZER_BITS = 8  # Byte channels
DEFAULT_LEAF_COUNT = 64  # Weighted colors handed from the quantizer to K-means
DEFAULT_PALETTE_SIZE = 5
BORDER_MIN_SHARE = 0.3  # Border share needed to call a color the background
BACKGROUND_DISTANCE = 24.0 ** 2  # Squared RGB distance treated as "same as background"
MIN_SHARE = 0.01  # Minimum fraction of pixels for a palette color
STD_FILTER = 1.5  # Drop colors this many std devs below the mean weight


# =============================================================================
# Color Conversion
# =============================================================================

def rgb_to_hsl(rgb: np.ndarray) -> np.ndarray:
    """Convert RGB array (0-255) to HSL (H in degrees, S and L in 0-1)."""
    rgb_norm = np.atleast_2d(np.asarray(rgb, dtype=np.float64)) / 255.0
    r, g, b = rgb_norm[:, 0], rgb_norm[:, 1], rgb_norm[:, 2]

    c_max = rgb_norm.max(axis=1)
    c_min = rgb_norm.min(axis=1)
    delta = c_max - c_min

    L = (c_max + c_min) / 2

    # Saturation is zero for grays
    denom = 1 - np.abs(2 * L - 1)
    S = np.where(delta > 0, delta / np.where(denom > 0, denom, 1), 0.0)

    safe_delta = np.where(delta > 0, delta, 1)
    h = np.where(
        c_max == r, ((g - b) / safe_delta) % 6,
        np.where(c_max == g, (b - r) / safe_delta + 2, (r - g) / safe_delta + 4)
    )
    H = np.where(delta > 0, h * 60, 0.0) % 360

    return np.column_stack([H, np.clip(S, 0, 1), L])


def hsl_to_rgb(hsl: np.ndarray) -> np.ndarray:
    """Convert HSL array (H in degrees, S and L in 0-1) to RGB (0-255)."""
    hsl = np.atleast_2d(np.asarray(hsl, dtype=np.float64))
    H, S, L = hsl[:, 0] % 360, hsl[:, 1], hsl[:, 2]

    c = (1 - np.abs(2 * L - 1)) * S
    x = c * (1 - np.abs((H / 60) % 2 - 1))
    m = L - c / 2

    sector = (H // 60).astype(np.int32)
    zeros = np.zeros_like(c)
    r = np.choose(sector, [c, x, zeros, zeros, x, c])
    g = np.choose(sector, [x, c, c, x, zeros, zeros])
    b = np.choose(sector, [zeros, zeros, x, c, c, x])

    rgb = np.column_stack([r + m, g + m, b + m])
    return np.clip(np.round(rgb * 255), 0, 255).astype(np.uint8)


def rgb_to_hex(rgb) -> str:
    """Convert an RGB triple to a hex string."""
    r, g, b = (int(c) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"


# =============================================================================
# Stage 1: Pixel Acquisition
# =============================================================================

def load_image(image_path: str, max_dimension: Optional[int] = DEFAULT_MAX_DIMENSION) -> tuple[np.ndarray, np.ndarray]:
    """
    Load an image as RGB pixels plus an opacity mask.

    Args:
        image_path: Path to the input image
        max_dimension: Longest side after downscaling (None keeps full size)

    Returns:
        Tuple of (rgb, opaque): (h, w, 3) uint8 array and (h, w) bool array

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If file is not a valid image or exceeds size limits
    """
    try:
        img = Image.open(image_path)
    except FileNotFoundError:
        raise FileNotFoundError(f"Image not found: {image_path}")
    except Exception as e:
        raise ValueError(f"Could not open image: {e}")

    width, height = img.size
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ValueError(
            f"Image dimensions {width}x{height} exceed maximum "
            f"{MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION}"
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise ValueError(
            f"Image has {width * height:,} pixels, exceeding maximum {MAX_IMAGE_PIXELS:,}"
        )

    img = img.convert('RGBA')
    if max_dimension is not None:
        img.thumbnail((max_dimension, max_dimension))

    pixels = np.array(img)
    return pixels[:, :, :3], pixels[:, :, 3] >= ALPHA_THRESHOLD


def detect_background_color(rgb: np.ndarray, opaque: np.ndarray,
                            min_share: float = BORDER_MIN_SHARE) -> Optional[tuple]:
    """
    Find the dominant color along the image border.

    Returns:
        RGB tuple of the most frequent opaque border color, or None if no
        border color covers at least `min_share` of the border.
    """
    h, w = opaque.shape
    if h == 0 or w == 0:
        return None

    border = np.zeros((h, w), dtype=bool)
    border[0, :] = border[-1, :] = True
    border[:, 0] = border[:, -1] = True
    border &= opaque

    border_pixels = rgb[border]
    if len(border_pixels) == 0:
        return None

    colors, counts = np.unique(border_pixels, axis=0, return_counts=True)
    top = counts.argmax()
    if counts[top] / len(border_pixels) < min_share:
        return None
    return tuple(int(c) for c in colors[top])


# =============================================================================
# Stage 2: Quantization
# =============================================================================

def quantize_pixels(pixels: np.ndarray, leaf_count: int = DEFAULT_LEAF_COUNT) -> list[tuple[tuple, int]]:
    """
    Compress pixels into at most `leaf_count` weighted colors.

    Args:
        pixels: Array of shape (n, 3) with 0-255 channels

    Returns:
        List of (mean RGB, pixel count) pairs
    """
    quantizer = Quantizer(max_bits=QUANTIZER_BITS, dimensions=3)
    quantizer.insert_vectors(np.asarray(pixels).reshape(-1, 3))
    return quantizer.reduce_to_size(leaf_count)


# =============================================================================
# Stage 3: Clustering
# =============================================================================

@dataclass
class PaletteColor:
    """A single palette entry."""
    rgb: tuple  # Rounded mean color
    weight: float  # Pixels represented
    share: float  # Fraction of all clustered pixels

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.rgb)

    @property
    def hsl(self) -> tuple:
        H, S, L = rgb_to_hsl(np.array(self.rgb))[0]
        return (float(H), float(S), float(L))


def choose_palette_size(weighted_colors: list, requested: int) -> int:
    """Number of clusters to run: never more than there are weighted colors."""
    if requested <= 0:
        raise ValueError(f"Palette size must be positive, got {requested}")
    return min(requested, len(weighted_colors))


def cluster_colors(weighted_colors: list, num_colors: int, rng=None) -> list[PaletteColor]:
    """
    Refine weighted colors into `num_colors` palette entries.

    Args:
        weighted_colors: (RGB, weight) pairs, e.g. from quantize_pixels()
        num_colors: Number of clusters
        rng: Seed or numpy Generator for the first cluster seed

    Returns:
        Palette colors sorted by weight descending.
    """
    clusterer = Clusterer(num_colors, dimensions=3)
    clusterer.set_points(weighted_colors)
    clusters = clusterer.perform_cluster(rng=rng)

    total = sum(cluster.size for cluster in clusters)
    palette = []
    for cluster in clusters:
        rgb = tuple(int(c) for c in np.clip(np.round(cluster.mean), 0, 255))
        palette.append(PaletteColor(rgb=rgb, weight=cluster.size, share=cluster.size / total))

    palette.sort(key=lambda c: -c.weight)
    return palette


# =============================================================================
# Stage 4: Filtering
# =============================================================================

def filter_palette(colors: list[PaletteColor], min_share: float = MIN_SHARE,
                   num_std: Optional[float] = STD_FILTER,
                   background: Optional[tuple] = None,
                   background_distance: float = BACKGROUND_DISTANCE) -> list[PaletteColor]:
    """
    Drop insignificant colors and colors matching the background.

    Args:
        colors: Palette sorted by weight descending
        min_share: Minimum fraction of pixels to keep a color
        num_std: Drop colors whose weight is this many standard deviations
            below the mean weight (None disables)
        background: Background RGB to exclude, if any
        background_distance: Squared RGB distance counted as background

    Returns:
        Filtered palette, never empty when `colors` is not.
    """
    if not colors:
        return []

    kept = [c for c in colors if c.share >= min_share]

    if num_std is not None and len(kept) >= 3:
        weights = np.array([c.weight for c in kept])
        cutoff = weights.mean() - num_std * weights.std()
        kept = [c for c in kept if c.weight >= cutoff]

    if background is not None:
        bg = np.array(background, dtype=np.float64)
        kept = [
            c for c in kept
            if np.sum((np.array(c.rgb, dtype=np.float64) - bg) ** 2) > background_distance
        ]

    if not kept:
        kept = [max(colors, key=lambda c: c.weight)]
    return kept


# =============================================================================
# Main Pipeline
# =============================================================================

@dataclass
class PaletteResult:
    """Output of the full pipeline."""
    colors: list = field(default_factory=list)  # PaletteColor, heaviest first
    background: Optional[tuple] = None  # Detected border color
    total_pixels: int = 0  # Opaque pixels quantized
    leaf_count: int = 0  # Weighted colors after quantization


def extract_palette(image_path: str, num_colors: int = DEFAULT_PALETTE_SIZE,
                    leaf_count: int = DEFAULT_LEAF_COUNT,
                    exclude_background: bool = True, seed=None,
                    max_dimension: Optional[int] = DEFAULT_MAX_DIMENSION) -> PaletteResult:
    """Run the full pipeline on an image."""
    if num_colors <= 0:
        raise ValueError(f"Palette size must be positive, got {num_colors}")

    # Stage 1: Pixel acquisition
    rgb, opaque = load_image(image_path, max_dimension=max_dimension)
    background = detect_background_color(rgb, opaque)
    pixels = rgb[opaque]
    if len(pixels) == 0:
        raise ValueError(f"Image has no opaque pixels: {image_path}")

    # Stage 2: Quantization
    weighted = quantize_pixels(pixels, leaf_count=max(leaf_count, num_colors))

    # Stage 3: Clustering
    k = choose_palette_size(weighted, num_colors)
    colors = cluster_colors(weighted, k, rng=seed)

    # Stage 4: Filtering
    colors = filter_palette(colors, background=background if exclude_background else None)

    return PaletteResult(
        colors=colors,
        background=background,
        total_pixels=len(pixels),
        leaf_count=len(weighted),
    )


def format_color(color: PaletteColor) -> str:
    """One-line description of a palette color."""
    H, S, L = color.hsl
    r, g, b = color.rgb
    return (f"{color.hex}  rgb({r:3d}, {g:3d}, {b:3d})  "
            f"hsl({H:5.1f}, {S * 100:5.1f}%, {L * 100:5.1f}%)  {color.share * 100:5.1f}%")


# =============================================================================
# CLI
# =============================================================================

def main():
    import argparse
    import sys

    parser = argparse.ArgumentParser(
        description='Extract a color palette from an image.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Path to the image file'
    )
    parser.add_argument(
        '--colors', '-n',
        type=int,
        default=DEFAULT_PALETTE_SIZE,
        help=f'Number of palette colors (default {DEFAULT_PALETTE_SIZE})'
    )
    parser.add_argument(
        '--leaves',
        type=int,
        default=DEFAULT_LEAF_COUNT,
        help=f'Weighted colors kept by the quantizer (default {DEFAULT_LEAF_COUNT})'
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Random seed for cluster seeding'
    )
    parser.add_argument(
        '--keep-background',
        action='store_true',
        help='Do not drop colors matching the border color'
    )
    parser.add_argument(
        '--no-downscale',
        action='store_true',
        help=f'Process at full resolution instead of downscaling to {DEFAULT_MAX_DIMENSION}px'
    )

    args = parser.parse_args()

    try:
        result = extract_palette(
            args.input,
            num_colors=args.colors,
            leaf_count=args.leaves,
            exclude_background=not args.keep_background,
            seed=args.seed,
            max_dimension=None if args.no_downscale else DEFAULT_MAX_DIMENSION,
        )
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error extracting palette: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Pixels: {result.total_pixels:,}  Quantized colors: {result.leaf_count}")
    if result.background is not None:
        print(f"Background: {rgb_to_hex(result.background)}")
    print()
    for color in result.colors:
        print(format_color(color))


if __name__ == '__main__':
    main()
