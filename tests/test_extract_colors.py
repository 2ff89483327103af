import sys

import numpy as np
import pytest
from PIL import Image

import extract_colors
from extract_colors import (
    PaletteColor,
    choose_palette_size,
    cluster_colors,
    detect_background_color,
    extract_palette,
    filter_palette,
    hsl_to_rgb,
    load_image,
    quantize_pixels,
    rgb_to_hex,
    rgb_to_hsl,
)


def _framed_image(path, size=100, frame=10, left=(255, 0, 0), right=(0, 0, 255),
                  background=(255, 255, 255)):
    """White frame around a left/right split of two solid colors."""
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    pixels[:, :] = background
    inner = slice(frame, size - frame)
    mid = size // 2
    pixels[inner, frame:mid] = left
    pixels[inner, mid:size - frame] = right
    Image.fromarray(pixels).save(path)
    return path


# =============================================================================
# Color Conversion
# =============================================================================

def test_rgb_to_hsl_known_values():
    hsl = rgb_to_hsl(np.array([[255, 0, 0], [255, 255, 255], [0, 0, 0], [0, 0, 255]]))
    assert hsl[0] == pytest.approx([0, 1, 0.5])
    assert hsl[1] == pytest.approx([0, 0, 1])
    assert hsl[2] == pytest.approx([0, 0, 0])
    assert hsl[3] == pytest.approx([240, 1, 0.5])


def test_hsl_to_rgb_known_values():
    rgb = hsl_to_rgb(np.array([[120, 1, 0.5], [0, 0, 0.5], [60, 1, 0.25]]))
    assert rgb.tolist() == [[0, 255, 0], [128, 128, 128], [128, 128, 0]]


def test_hsl_conversion_recovers_palette_color():
    color = (37, 150, 190)
    assert hsl_to_rgb(rgb_to_hsl(np.array(color)))[0].tolist() == list(color)


def test_rgb_to_hex():
    assert rgb_to_hex((255, 8, 0)) == '#ff0800'


# =============================================================================
# Pixel Acquisition
# =============================================================================

def test_load_image_downscales_and_masks_alpha(tmp_path):
    pixels = np.zeros((300, 512, 4), dtype=np.uint8)
    pixels[:, :, 0] = 200
    pixels[:, :256, 3] = 255  # Left half opaque, right half transparent
    path = tmp_path / 'alpha.png'
    Image.fromarray(pixels).save(path)

    rgb, opaque = load_image(str(path), max_dimension=128)
    assert rgb.shape[2] == 3
    assert max(rgb.shape[:2]) == 128
    assert opaque[:, :10].all()
    assert not opaque[:, -10:].any()

    rgb_full, _ = load_image(str(path), max_dimension=None)
    assert rgb_full.shape == (300, 512, 3)


def test_load_image_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_image(str(tmp_path / 'missing.png'))

    bogus = tmp_path / 'bogus.png'
    bogus.write_text('not an image')
    with pytest.raises(ValueError):
        load_image(str(bogus))


def test_load_image_rejects_oversized(tmp_path, monkeypatch):
    path = tmp_path / 'wide.png'
    Image.new('RGB', (64, 8)).save(path)
    monkeypatch.setattr(extract_colors, 'MAX_IMAGE_DIMENSION', 32)
    with pytest.raises(ValueError):
        load_image(str(path))


def test_detect_background_color(tmp_path):
    path = _framed_image(tmp_path / 'framed.png')
    rgb, opaque = load_image(str(path))
    assert detect_background_color(rgb, opaque) == (255, 255, 255)


def test_detect_background_color_none_for_busy_border():
    rng = np.random.default_rng(0)
    rgb = rng.integers(0, 256, size=(20, 20, 3)).astype(np.uint8)
    opaque = np.ones((20, 20), dtype=bool)
    assert detect_background_color(rgb, opaque) is None


def test_detect_background_color_ignores_transparent_border():
    rgb = np.zeros((10, 10, 3), dtype=np.uint8)
    opaque = np.zeros((10, 10), dtype=bool)
    opaque[2:8, 2:8] = True
    assert detect_background_color(rgb, opaque) is None


# =============================================================================
# Quantization and Clustering
# =============================================================================

def test_quantize_pixels_counts_exact_colors():
    pixels = np.array([[10, 20, 30]] * 5 + [[200, 100, 0]] * 3, dtype=np.uint8)
    weighted = sorted(quantize_pixels(pixels, leaf_count=8), key=lambda w: -w[1])
    assert weighted[0] == ((10.0, 20.0, 30.0), 5)
    assert weighted[1] == ((200.0, 100.0, 0.0), 3)


def test_quantize_pixels_respects_leaf_count():
    rng = np.random.default_rng(1)
    pixels = rng.integers(0, 256, size=(2000, 3)).astype(np.uint8)
    weighted = quantize_pixels(pixels, leaf_count=10)
    assert len(weighted) <= 10
    assert sum(count for _, count in weighted) == 2000


def test_choose_palette_size():
    assert choose_palette_size([((0, 0, 0), 1)] * 3, 5) == 3
    assert choose_palette_size([((0, 0, 0), 1)] * 9, 5) == 5
    with pytest.raises(ValueError):
        choose_palette_size([], 0)


def test_cluster_colors_sorted_by_weight():
    weighted = [((0, 0, 0), 10), ((2, 2, 2), 10), ((250, 250, 250), 3)]
    palette = cluster_colors(weighted, 2, rng=0)

    assert [c.rgb for c in palette] == [(1, 1, 1), (250, 250, 250)]
    assert [c.weight for c in palette] == [20, 3]
    assert sum(c.share for c in palette) == pytest.approx(1.0)


# =============================================================================
# Filtering
# =============================================================================

def _color(rgb, weight, total):
    return PaletteColor(rgb=rgb, weight=weight, share=weight / total)


def test_filter_palette_min_share_and_background():
    colors = [
        _color((255, 255, 255), 500, 1000),
        _color((200, 0, 0), 300, 1000),
        _color((0, 0, 200), 195, 1000),
        _color((0, 200, 0), 5, 1000),
    ]
    kept = filter_palette(colors, min_share=0.01, num_std=None, background=(250, 250, 250))
    assert [c.rgb for c in kept] == [(200, 0, 0), (0, 0, 200)]


def test_filter_palette_std_deviation():
    colors = [_color((i * 40, 0, 0), w, 1000) for i, w in enumerate([300, 290, 280, 100])]
    kept = filter_palette(colors, min_share=0.0, num_std=1.0)
    assert [c.weight for c in kept] == [300, 290, 280]


def test_filter_palette_never_empty():
    colors = [_color((255, 255, 255), 10, 10)]
    kept = filter_palette(colors, background=(255, 255, 255))
    assert [c.rgb for c in kept] == [(255, 255, 255)]
    assert filter_palette([]) == []


def test_palette_color_properties():
    color = PaletteColor(rgb=(255, 0, 0), weight=4, share=0.5)
    assert color.hex == '#ff0000'
    assert color.hsl == pytest.approx((0.0, 1.0, 0.5))


# =============================================================================
# Pipeline and CLI
# =============================================================================

def test_extract_palette_drops_background(tmp_path):
    path = _framed_image(tmp_path / 'framed.png')
    result = extract_palette(str(path), num_colors=3, seed=0)

    assert result.background == (255, 255, 255)
    assert result.total_pixels == 100 * 100
    assert result.leaf_count == 3
    assert {c.hex for c in result.colors} == {'#ff0000', '#0000ff'}


def test_extract_palette_keep_background(tmp_path):
    path = _framed_image(tmp_path / 'framed.png')
    result = extract_palette(str(path), num_colors=3, seed=0, exclude_background=False)
    assert result.colors[0].hex == '#ffffff'
    assert len(result.colors) == 3


def test_extract_palette_fewer_colors_than_requested(tmp_path):
    path = tmp_path / 'solid.png'
    Image.new('RGB', (16, 16), (10, 200, 30)).save(path)
    result = extract_palette(str(path), num_colors=5, seed=0)
    assert [c.rgb for c in result.colors] == [(10, 200, 30)]


def test_extract_palette_rejects_bad_size(tmp_path):
    path = _framed_image(tmp_path / 'framed.png')
    with pytest.raises(ValueError):
        extract_palette(str(path), num_colors=0)


def test_cli_prints_palette(tmp_path, monkeypatch, capsys):
    path = _framed_image(tmp_path / 'framed.png')
    monkeypatch.setattr(sys, 'argv', ['extract_colors.py', '-i', str(path), '-n', '3', '--seed', '0'])
    extract_colors.main()

    out = capsys.readouterr().out
    assert 'Background: #ffffff' in out
    assert '#ff0000' in out
    assert '#0000ff' in out


def test_cli_missing_file(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(sys, 'argv', ['extract_colors.py', '-i', str(tmp_path / 'nope.png')])
    with pytest.raises(SystemExit) as exc:
        extract_colors.main()
    assert exc.value.code == 1
    assert 'Error' in capsys.readouterr().err
