#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
step1_color_extract.py
Dominant color palette from an uploaded product photo:
- Downscales to <=180 px on the long side (bounds clustering cost)
- Drops transparent pixels and flat neutrals outside a central circle
- K-means in RGB with strided seeding, sizes -> integer percentages summing to 100
- Background correction (white, light-gray, tan and wood backdrops never
  rank first but keep their share) and brightness bias (shadow-darkened
  light garments)
- Names every swatch via utils.color_naming

Usage:
  python step1_color_extract.py --image ./product.jpg --k 5 --json-out ./palette.json
"""

from __future__ import annotations

import argparse
import io
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import ColorExtractionError
from ..utils.color_naming import get_color_name, hex_to_rgb, rgb_to_hex, rgb_to_hsl, simple_name

logger = logging.getLogger("lookbook.color_extract")


# ----------------- tuning constants -----------------
MAX_SIDE = 180
ALPHA_MIN = 120                 # alpha <= this is treated as transparent
MASK_RADIUS_RATIO = 0.85        # of min(cx, cy)
EDGE_MIN_SATURATION = 18.0      # edge pixels kept only when clearly chromatic...
EDGE_MIN_LIGHTNESS = 7.0        # ...and neither near-black...
EDGE_MAX_LIGHTNESS = 88.0       # ...nor near-white
MAX_ITERATIONS = 20
CONVERGENCE_DISTANCE = 1.0

BACKGROUND_RULES = ((90.0, 15.0), (85.0, 8.0))   # (L above, S below)
FLOOR_RULES = (                                   # (hue, S, L) ranges
    ((25.0, 55.0), (10.0, 45.0), (45.0, 75.0)),    # tan / beige
    ((15.0, 45.0), (15.0, 50.0), (35.0, 65.0)),    # wood / brown
)
WHITE_PRODUCT_MIN_LIGHTNESS = 85.0
WHITE_PRODUCT_MAX_SATURATION = 15.0
WHITE_PRODUCT_MIN_SHARE = 15.0
BRIGHTNESS_GAIN = 15.0
BRIGHTNESS_MIN_SHARE = 8.0
BRIGHTNESS_SHARE_RATIO = 0.35
FORCE_WHITE_MEAN = 210.0

DEFAULT_PALETTE_SIZE = 5


# ----------------- data -----------------
@dataclass(frozen=True)
class ColorSwatch:
    r: int
    g: int
    b: int
    hex: str
    percentage: int
    name: str
    simple_name: str

    @classmethod
    def from_rgb(cls, rgb: Sequence[float], percentage: int, force_white: bool = False) -> "ColorSwatch":
        r, g, b = (int(round(c)) for c in rgb)
        hex_value = rgb_to_hex(r, g, b)
        name = get_color_name(hex_value, force_white=force_white)
        return cls(r=r, g=g, b=b, hex=hex_value, percentage=percentage, name=name, simple_name=simple_name(name))

    @classmethod
    def from_hex(cls, hex_value: str, percentage: int = 100) -> "ColorSwatch":
        return cls.from_rgb(hex_to_rgb(hex_value), percentage)

    @property
    def lightness(self) -> float:
        return rgb_to_hsl(self.r, self.g, self.b)[2]

    def to_dict(self) -> dict:
        return asdict(self)


Palette = Tuple[ColorSwatch, ...]


# ----------------- pixel sampling -----------------
def _hsl_arrays(rgb: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorized HSL saturation and lightness (percent) for an (N, 3) uint8 array."""
    f = rgb.astype(np.float64) / 255.0
    mx = f.max(axis=1)
    mn = f.min(axis=1)
    light = (mx + mn) / 2.0
    delta = mx - mn
    denom = np.where(light > 0.5, 2.0 - mx - mn, mx + mn)
    sat = np.divide(delta, denom, out=np.zeros_like(delta), where=denom > 0)
    return sat * 100.0, light * 100.0


def sample_pixels(img: Image.Image) -> np.ndarray:
    """Return the (N, 3) RGB pixels that survive transparency and center masking."""
    rgba = np.asarray(img.convert("RGBA"))
    h, w = rgba.shape[:2]
    cx, cy = w / 2.0, h / 2.0
    max_radius = max(min(cx, cy), 1e-6)

    ys, xs = np.mgrid[0:h, 0:w]
    ratio = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2) / max_radius

    flat = rgba.reshape(-1, 4)
    rgb = flat[:, :3]
    sat, light = _hsl_arrays(rgb)

    opaque = flat[:, 3] > ALPHA_MIN
    inside = ratio.reshape(-1) <= MASK_RADIUS_RATIO
    chromatic = (sat >= EDGE_MIN_SATURATION) & (light >= EDGE_MIN_LIGHTNESS) & (light <= EDGE_MAX_LIGHTNESS)
    keep = opaque & (inside | chromatic)

    if not np.any(keep):
        logger.debug("Masking removed every pixel; sampling the full canvas")
        return rgb.copy()
    return rgb[keep]


# ----------------- clustering -----------------
def _seed_centroids(pixels: np.ndarray, k: int) -> np.ndarray:
    n = len(pixels)
    step = max(1, n // k)
    seeds: List[np.ndarray] = []
    for i in range(k):
        idx = min(i * step, n - 1)
        # Identical seeds would leave a cluster permanently empty.
        for offset in range(n):
            candidate = pixels[(idx + offset) % n]
            if not any(np.array_equal(candidate, s) for s in seeds):
                seeds.append(candidate)
                break
    return np.array(seeds, dtype=np.float64)


def kmeans(pixels: np.ndarray, k: int, max_iterations: int = MAX_ITERATIONS) -> List[Tuple[np.ndarray, int]]:
    """
    Plain Lloyd k-means in RGB.

    Returns (centroid, member_count) pairs with empty clusters removed.
    ``k`` is capped at the number of distinct pixels.
    """
    if len(pixels) == 0:
        return []
    pts = pixels.astype(np.float64)
    distinct = len(np.unique(pixels, axis=0))
    k = max(1, min(k, distinct))
    centroids = _seed_centroids(pixels, k)

    labels = np.zeros(len(pts), dtype=np.int64)
    for _ in range(max_iterations):
        dist = ((pts[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2)
        labels = dist.argmin(axis=1)

        moved = np.zeros(len(centroids))
        for i in range(len(centroids)):
            members = pts[labels == i]
            if len(members) == 0:
                continue
            new = members.mean(axis=0)
            moved[i] = np.linalg.norm(new - centroids[i])
            centroids[i] = new
        if np.all(moved < CONVERGENCE_DISTANCE):
            break

    counts = np.bincount(labels, minlength=len(centroids))
    return [(centroids[i], int(counts[i])) for i in range(len(centroids)) if counts[i] > 0]


def to_percentages(counts: Sequence[int]) -> List[int]:
    """
    Integer shares summing to 100 (largest-remainder apportionment).

    Every share is floored, then the missing points go to the largest
    remainders, ties broken by member count. A cluster with more members
    never ends up with a smaller share than one with fewer.
    """
    counts = [int(c) for c in counts]
    total = sum(counts)
    if total <= 0:
        return [0 for _ in counts]
    pct = [c * 100 // total for c in counts]
    remainders = [c * 100 % total for c in counts]
    order = sorted(range(len(counts)), key=lambda i: (remainders[i], counts[i]), reverse=True)
    for i in order[:100 - sum(pct)]:
        pct[i] += 1
    return pct


# ----------------- heuristics -----------------
def is_light_backdrop(rgb: Sequence[float]) -> bool:
    """White or light-gray studio backdrop."""
    _, s, l = rgb_to_hsl(*rgb)
    return any(l > l_min and s < s_max for l_min, s_max in BACKGROUND_RULES)


def is_floor_tone(rgb: Sequence[float]) -> bool:
    """Tan, beige or wood surfaces products are often shot on."""
    h, s, l = rgb_to_hsl(*rgb)
    return any(
        h_lo <= h <= h_hi and s_lo <= s <= s_hi and l_lo <= l <= l_hi
        for (h_lo, h_hi), (s_lo, s_hi), (l_lo, l_hi) in FLOOR_RULES
    )


def is_likely_background(rgb: Sequence[float]) -> bool:
    return is_light_backdrop(rgb) or is_floor_tone(rgb)


def _is_white_product(rgb: Sequence[float]) -> bool:
    _, s, l = rgb_to_hsl(*rgb)
    return l > WHITE_PRODUCT_MIN_LIGHTNESS and s < WHITE_PRODUCT_MAX_SATURATION


def _rank_clusters(clusters: List[Tuple[np.ndarray, int]]) -> Tuple[List[Tuple[np.ndarray, int]], bool]:
    """
    Order clusters by size, then move the product color to the front when
    the largest cluster is a backdrop. Background clusters stay in the
    palette with their true share.

    Returns the ranked clusters and whether a backdrop was demoted.
    """
    ranked = sorted(clusters, key=lambda c: c[1], reverse=True)
    if len(ranked) < 2 or not is_likely_background(ranked[0][0]):
        return ranked, False

    total = float(sum(count for _, count in ranked))
    top = ranked[0][0]
    product = None
    if is_floor_tone(top) and not is_light_backdrop(top):
        # white product on a tan or wood floor
        product = next(
            (c for c in ranked[1:]
             if _is_white_product(c[0]) and c[1] / total * 100.0 > WHITE_PRODUCT_MIN_SHARE),
            None,
        )
    if product is None:
        product = next((c for c in ranked[1:] if not is_likely_background(c[0])), None)
    if product is None:
        # beige garments read as floor tone; only a light backdrop is skipped then
        product = next((c for c in ranked[1:] if not is_light_backdrop(c[0])), None)
    if product is None:
        return ranked, False

    logger.info(
        f"Top color {rgb_to_hex(*top)} looks like background; "
        f"using {rgb_to_hex(*product[0])}"
    )
    return [product] + [c for c in ranked if c is not product], True


def _apply_brightness_bias(swatches: List[ColorSwatch], skip_background: bool = False) -> List[ColorSwatch]:
    if len(swatches) < 2:
        return swatches
    top = swatches[0]
    candidates = [
        s for s in swatches
        if not (skip_background and s is not top and is_likely_background((s.r, s.g, s.b)))
    ]
    brightest = max(candidates, key=lambda s: s.lightness)
    gain = brightest.lightness - top.lightness
    share_ok = brightest.percentage >= max(BRIGHTNESS_MIN_SHARE, top.percentage * BRIGHTNESS_SHARE_RATIO)
    if brightest is not top and gain >= BRIGHTNESS_GAIN and share_ok:
        logger.debug(f"Brightness bias: promoting {brightest.hex} over {top.hex} (+{gain:.1f} L)")
        return [brightest] + [s for s in swatches if s is not brightest]
    return swatches


# ----------------- extractor -----------------
class ColorExtractor:
    """Palette extraction for uploaded product images."""

    def __init__(self, palette_size: int = DEFAULT_PALETTE_SIZE):
        self.palette_size = palette_size

    def extract(self, image_bytes: bytes, k: Optional[int] = None) -> Palette:
        try:
            img = Image.open(io.BytesIO(image_bytes))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ColorExtractionError(f"Invalid image data: {e}") from e
        return self.extract_from_image(img, k)

    def extract_from_image(self, img: Image.Image, k: Optional[int] = None) -> Palette:
        k = k or self.palette_size
        work = img.copy()
        work.thumbnail((MAX_SIDE, MAX_SIDE))

        pixels = sample_pixels(work)
        clusters, demoted_backdrop = _rank_clusters(kmeans(pixels, k))
        if not clusters:
            raise ColorExtractionError("Invalid image: no pixels to sample")

        pct = to_percentages([count for _, count in clusters])
        swatches = [ColorSwatch.from_rgb(c, p) for (c, _), p in zip(clusters, pct)]
        swatches = _apply_brightness_bias(swatches, skip_background=demoted_backdrop)

        dominant = swatches[0]
        if (dominant.r + dominant.g + dominant.b) / 3.0 > FORCE_WHITE_MEAN and dominant.name != "White":
            swatches[0] = ColorSwatch.from_rgb((dominant.r, dominant.g, dominant.b), dominant.percentage, force_white=True)

        palette = tuple(swatches)
        logger.info(
            f"Extracted {len(palette)} colors from {len(pixels)} pixels; "
            f"dominant {palette[0].hex} ({palette[0].name}, {palette[0].percentage}%)"
        )
        return palette


# ----------------- CLI -----------------
def main():
    ap = argparse.ArgumentParser(description="Step 1: extract the dominant color palette from a product photo")
    ap.add_argument("--image", required=True, help="Path to the product image")
    ap.add_argument("--k", type=int, default=DEFAULT_PALETTE_SIZE, help="Palette size")
    ap.add_argument("--json-out", help="Write the palette here instead of stdout")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    palette = ColorExtractor().extract(Path(args.image).read_bytes(), k=args.k)
    payload = json.dumps([s.to_dict() for s in palette], indent=2)
    if args.json_out:
        Path(args.json_out).write_text(payload, encoding="utf-8")
        print(f"✅ Palette written to {args.json_out}")
    else:
        print(payload)


if __name__ == "__main__":
    main()
