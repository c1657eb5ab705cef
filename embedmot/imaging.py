"""Image helpers: rectangle clipping, sub-windows, colour conversion, resizing, drawing."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .geometry import Rect

_XN = 0.950456
_ZN = 1.088754
_RGB_TO_XYZ = np.array(
    [
        [0.412453, 0.357580, 0.180423],
        [0.212671, 0.715160, 0.072169],
        [0.019334, 0.119193, 0.950227],
    ]
)


def limit(rect: Rect, bounds: Rect) -> Rect:
    """Clip a rectangle to lie inside bounds; the size never goes negative."""
    x, y, w, h = rect.x, rect.y, rect.width, rect.height
    if x + w > bounds.x + bounds.width:
        w = bounds.x + bounds.width - x
    if y + h > bounds.y + bounds.height:
        h = bounds.y + bounds.height - y
    if x < bounds.x:
        w -= bounds.x - x
        x = bounds.x
    if y < bounds.y:
        h -= bounds.y - y
        y = bounds.y
    return Rect(x, y, max(w, 0), max(h, 0))


def get_border(original: Rect, limited: Rect) -> Rect:
    """Return the margins (left, top, right, bottom) cut from original to get limited.

    The result holds left in x, top in y, right in width and bottom in height.
    """
    border = Rect(
        limited.x - original.x,
        limited.y - original.y,
        (original.x + original.width) - (limited.x + limited.width),
        (original.y + original.height) - (limited.y + limited.height),
    )
    if min(border.x, border.y, border.width, border.height) < 0:
        raise ValueError("limited rectangle is not inside the original one")
    return border


def subwindow(image: np.ndarray, window: Rect, replicate: bool = False) -> np.ndarray:
    """Cut window out of image, padding the parts that fall outside.

    Padding repeats the edge pixels when replicate is true and is zero otherwise.
    """
    img = np.asarray(image)
    rows, cols = img.shape[:2]
    cut = limit(window, Rect(0, 0, cols, rows))
    if cut.is_empty():
        raise ValueError("window does not overlap the image")
    border = get_border(window, cut)
    res = img[cut.y:cut.y + cut.height, cut.x:cut.x + cut.width]
    if border != Rect():
        pad = [(border.y, border.height), (border.x, border.width)]
        pad += [(0, 0)] * (img.ndim - 2)
        return np.pad(res, pad, mode="edge" if replicate else "constant")
    return res.copy()


def _cast_like(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


def _check_colour(img: np.ndarray) -> None:
    if img.ndim != 3 or img.shape[2] < 3:
        raise ValueError("expected a BGR image with at least three channels")


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert a BGR image to one channel; a one-channel image is copied."""
    img = np.asarray(image)
    if img.ndim == 2:
        return img.copy()
    _check_colour(img)
    src = img[..., :3].astype(np.float64)
    gray = 0.114 * src[..., 0] + 0.587 * src[..., 1] + 0.299 * src[..., 2]
    return _cast_like(gray, img.dtype)


def gray_float(image: np.ndarray) -> np.ndarray:
    """Convert to grey and scale by 1/255 into float32."""
    return to_gray(image).astype(np.float32) * np.float32(1.0 / 255.0)


def _linear_coords(dst: int, src: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    pos = (np.arange(dst) + 0.5) * (src / dst) - 0.5
    lo = np.floor(pos).astype(np.intp)
    frac = pos - lo
    below = lo < 0
    frac[below] = 0.0
    lo[below] = 0
    above = lo >= src - 1
    frac[above] = 0.0
    lo[above] = src - 1
    hi = np.minimum(lo + 1, src - 1)
    return lo, hi, frac


def resize(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Bilinear resize to width x height using pixel-centre alignment."""
    if width <= 0 or height <= 0:
        raise ValueError("target size must be positive")
    img = np.asarray(image)
    rows, cols = img.shape[:2]
    if rows == 0 or cols == 0:
        raise ValueError("cannot resize an empty image")
    src = img.astype(np.float64)
    expand = (1,) * (img.ndim - 2)

    y0, y1, fy = _linear_coords(height, rows)
    wy = fy.reshape((height, 1) + expand)
    by_rows = src[y0] * (1.0 - wy) + src[y1] * wy

    x0, x1, fx = _linear_coords(width, cols)
    wx = fx.reshape((width,) + expand)
    out = by_rows[:, x0] * (1.0 - wx) + by_rows[:, x1] * wx
    return _cast_like(out, img.dtype)


def bgr_to_lab(image: np.ndarray) -> np.ndarray:
    """Convert an 8-bit BGR image to 8-bit Lab (L scaled to 0..255, a and b offset by 128)."""
    img = np.asarray(image)
    _check_colour(img)
    rgb = img[..., 2::-1].astype(np.float64) / 255.0
    linear = np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)
    xyz = linear @ _RGB_TO_XYZ.T
    x = xyz[..., 0] / _XN
    y = xyz[..., 1]
    z = xyz[..., 2] / _ZN

    def f(t: np.ndarray) -> np.ndarray:
        return np.where(t > 0.008856, np.cbrt(t), 7.787 * t + 16.0 / 116.0)

    fx, fy, fz = f(x), f(y), f(z)
    lightness = np.where(y > 0.008856, 116.0 * fy - 16.0, 903.3 * y)
    lab = np.stack(
        [lightness * 255.0 / 100.0, 500.0 * (fx - fy) + 128.0, 200.0 * (fy - fz) + 128.0],
        axis=-1,
    )
    return np.clip(np.rint(lab), 0, 255).astype(np.uint8)


def _pixel(image: np.ndarray, color: float | Sequence[float]):
    values = np.atleast_1d(np.asarray(color, dtype=np.float64))
    channels = image.shape[2] if image.ndim == 3 else 1
    if values.size < channels:
        values = np.concatenate([values, np.zeros(channels - values.size)])
    values = _cast_like(values[:channels], image.dtype)
    return values if image.ndim == 3 else values[0]


def draw_rectangle(image: np.ndarray, rect: Rect, color: float | Sequence[float]) -> np.ndarray:
    """Draw a one-pixel rectangle outline in place, clipped to the image; returns image."""
    if rect.is_empty():
        return image
    rows, cols = image.shape[:2]
    value = _pixel(image, color)
    left, top = rect.x, rect.y
    right, bottom = rect.x + rect.width - 1, rect.y + rect.height - 1

    def span(lo: int, hi: int, size: int) -> slice | None:
        lo, hi = max(lo, 0), min(hi, size - 1)
        return slice(lo, hi + 1) if lo <= hi else None

    cols_span = span(left, right, cols)
    rows_span = span(top, bottom, rows)
    if cols_span is not None:
        for y in {top, bottom}:
            if 0 <= y < rows:
                image[y, cols_span] = value
    if rows_span is not None:
        for x in {left, right}:
            if 0 <= x < cols:
                image[rows_span, x] = value
    return image


def draw_text(
    image: np.ndarray,
    text: str,
    origin: tuple[int, int],
    color: float | Sequence[float],
) -> np.ndarray:
    """Draw text in place with its baseline's left end at origin; returns image."""
    if not text:
        return image
    rows, cols = image.shape[:2]
    font = ImageFont.load_default()
    _, _, _, bottom = font.getbbox(text)
    mask_img = Image.new("L", (cols, rows), 0)
    ImageDraw.Draw(mask_img).text(
        (int(origin[0]), int(origin[1]) - bottom), text, fill=255, font=font
    )
    mask = np.asarray(mask_img) > 127
    image[mask] = _pixel(image, color)
    return image