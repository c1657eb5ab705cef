"""Felzenszwalb HOG features: cell histograms, block normalisation and PCA reduction."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

NUM_SECTOR = 9
"""Number of orientation sectors in the gradient histogram."""

VAL_OF_TRUNCATE = 0.2
"""Default truncation threshold applied after normalisation."""

_FLT_EPSILON = np.float32(np.finfo(np.float32).eps)


@dataclass
class FeatureMap:
    """A rectangular grid of cells, each holding a feature vector.

    ``data`` has shape (size_y, size_x, num_features) and dtype float32.
    """

    data: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.data, dtype=np.float32)
        if arr.ndim != 3:
            raise ValueError("feature map data must have shape (size_y, size_x, num_features)")
        self.data = arr

    @property
    def size_x(self) -> int:
        """Number of cells across."""
        return self.data.shape[1]

    @property
    def size_y(self) -> int:
        """Number of cells down."""
        return self.data.shape[0]

    @property
    def num_features(self) -> int:
        """Length of each cell's feature vector."""
        return self.data.shape[2]


def _gradients(img: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return gradient magnitude and the two orientation bins for every pixel.

    Only interior pixels are filled; the one-pixel border stays zero.
    """
    height, width = img.shape[:2]
    dx = img[1:-1, 2:] - img[1:-1, :-2]
    dy = img[2:, 1:-1] - img[:-2, 1:-1]
    mag = np.sqrt(dx * dx + dy * dy)

    best = np.argmax(mag, axis=2)[..., None]
    r_in = np.take_along_axis(mag, best, axis=2)[..., 0]
    x = np.take_along_axis(dx, best, axis=2)[..., 0]
    y = np.take_along_axis(dy, best, axis=2)[..., 0]

    step = np.float32(np.pi) / np.float32(NUM_SECTOR)
    args = np.arange(NUM_SECTOR + 1, dtype=np.float32) * step
    boundary_x = np.cos(args).astype(np.float32)
    boundary_y = np.sin(args).astype(np.float32)

    max_val = boundary_x[0] * x + boundary_y[0] * y
    max_idx = np.zeros(x.shape, dtype=np.intp)
    for kk in range(NUM_SECTOR):
        dot = boundary_x[kk] * x + boundary_y[kk] * y
        greater = dot > max_val
        opposite = ~greater & (-dot > max_val)
        max_val = np.where(greater, dot, np.where(opposite, -dot, max_val))
        max_idx = np.where(greater, kk, np.where(opposite, kk + NUM_SECTOR, max_idx))

    r = np.zeros((height, width), dtype=np.float32)
    sensitive = np.zeros((height, width), dtype=np.intp)
    r[1:-1, 1:-1] = r_in
    sensitive[1:-1, 1:-1] = max_idx
    return r, sensitive % NUM_SECTOR, sensitive


def _interpolation_weights(k: int) -> tuple[np.ndarray, np.ndarray]:
    half = k // 2
    j = np.arange(k)
    lower = j < half
    a = np.where(lower, half - j - 0.5, j - half + 0.5).astype(np.float32)
    b = np.where(lower, half + j + 0.5, -j + half - 0.5 + k).astype(np.float32)
    share = (a * b) / (a + b)
    weights = np.stack([np.float32(1.0) / a * share, np.float32(1.0) / b * share], axis=1)
    nearest = np.where(lower, -1, 1)
    return weights.astype(np.float32), nearest


def get_feature_maps(image: np.ndarray, k: int) -> FeatureMap:
    """Build the 27-bin orientation histogram of every k x k cell of image.

    Each cell holds 9 contrast-insensitive and 18 contrast-sensitive bins,
    with bilinear spreading of each pixel into neighbouring cells.
    """
    if k <= 0:
        raise ValueError("cell size must be positive")
    img = np.asarray(image, dtype=np.float32)
    if img.ndim == 2:
        img = img[:, :, None]
    elif img.ndim != 3 or img.shape[2] == 0:
        raise ValueError("image must be two-dimensional or have a channel axis")

    height, width = img.shape[:2]
    size_x, size_y = width // k, height // k
    features = np.zeros((size_y, size_x, 3 * NUM_SECTOR), dtype=np.float32)
    if height < 3 or width < 3 or size_x == 0 or size_y == 0:
        return FeatureMap(features)

    r, alfa_insensitive, alfa_sensitive = _gradients(img)
    weights, nearest = _interpolation_weights(k)

    rows = np.arange(size_y * k)
    cols = np.arange(size_x * k)
    rows = rows[(rows > 0) & (rows < height - 1)]
    cols = cols[(cols > 0) & (cols < width - 1)]
    py, px = np.meshgrid(rows, cols, indexing="ij")
    py, px = py.ravel(), px.ravel()

    i, ii = py // k, py % k
    j, jj = px // k, px % k
    rd = r[py, px]
    bin_a = alfa_insensitive[py, px]
    bin_b = alfa_sensitive[py, px] + NUM_SECTOR

    zero = np.zeros_like(i)
    contributions = (
        (zero, zero, weights[ii, 0], weights[jj, 0]),
        (nearest[ii], zero, weights[ii, 1], weights[jj, 0]),
        (zero, nearest[jj], weights[ii, 0], weights[jj, 1]),
        (nearest[ii], nearest[jj], weights[ii, 1], weights[jj, 1]),
    )
    for di, dj, wy, wx in contributions:
        ci, cj = i + di, j + dj
        inside = (ci >= 0) & (ci <= size_y - 1) & (cj >= 0) & (cj <= size_x - 1)
        values = ((rd * wy) * wx).astype(np.float32)[inside]
        ci, cj = ci[inside], cj[inside]
        np.add.at(features, (ci, cj, bin_a[inside]), values)
        np.add.at(features, (ci, cj, bin_b[inside]), values)

    return FeatureMap(features)


def normalize_and_truncate(feature_map: FeatureMap, alfa: float = VAL_OF_TRUNCATE) -> FeatureMap:
    """Normalise each inner cell by its four 2x2 block energies and cap at alfa.

    The border cells are dropped, so the result is two cells smaller in each
    direction and holds 108 features per cell.
    """
    if feature_map.num_features != 3 * NUM_SECTOR:
        raise ValueError(f"expected {3 * NUM_SECTOR} features per cell")
    if feature_map.size_x < 2 or feature_map.size_y < 2:
        raise ValueError("feature map is too small to normalise")

    data = feature_map.data
    part = np.sum(data[..., :NUM_SECTOR] * data[..., :NUM_SECTOR], axis=-1, dtype=np.float32)

    centre = part[1:-1, 1:-1]
    up, down = part[:-2, 1:-1], part[2:, 1:-1]
    left, right = part[1:-1, :-2], part[1:-1, 2:]
    up_left, up_right = part[:-2, :-2], part[:-2, 2:]
    down_left, down_right = part[2:, :-2], part[2:, 2:]

    norms = [
        np.sqrt(centre + right + down + down_right) + _FLT_EPSILON,
        np.sqrt(centre + right + up + up_right) + _FLT_EPSILON,
        np.sqrt(centre + left + down + down_left) + _FLT_EPSILON,
        np.sqrt(centre + left + up + up_left) + _FLT_EPSILON,
    ]

    cells = data[1:-1, 1:-1]
    insensitive = cells[..., :NUM_SECTOR]
    sensitive = cells[..., NUM_SECTOR:]
    blocks = [insensitive / n[..., None] for n in norms]
    blocks += [sensitive / n[..., None] for n in norms]
    out = np.concatenate(blocks, axis=-1).astype(np.float32)

    cap = np.float32(alfa)
    return FeatureMap(np.where(out > cap, cap, out))


def pca_feature_maps(feature_map: FeatureMap) -> FeatureMap:
    """Reduce each 108-feature cell to 31 features.

    The result holds 18 contrast-sensitive sums, 9 contrast-insensitive sums
    and 4 per-normalisation energy terms.
    """
    expected = NUM_SECTOR * 12
    if feature_map.num_features != expected:
        raise ValueError(f"expected {expected} features per cell")

    yp = 4
    nx = np.float32(1.0) / np.sqrt(np.float32(NUM_SECTOR * 2))
    ny = np.float32(1.0) / np.sqrt(np.float32(yp))

    data = feature_map.data
    shape = data.shape[:2]
    insensitive = data[..., : yp * NUM_SECTOR].reshape(shape + (yp, NUM_SECTOR))
    sensitive = data[..., yp * NUM_SECTOR:].reshape(shape + (yp, 2 * NUM_SECTOR))

    out = np.concatenate(
        [
            sensitive.sum(axis=-2, dtype=np.float32) * ny,
            insensitive.sum(axis=-2, dtype=np.float32) * ny,
            sensitive.sum(axis=-1, dtype=np.float32) * nx,
        ],
        axis=-1,
    )
    return FeatureMap(out.astype(np.float32))