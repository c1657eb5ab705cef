"""Kernelized correlation filter tracker with APCE-based confidence gating."""

from __future__ import annotations

import warnings
from dataclasses import dataclass, replace

import numpy as np

from .fft import complex_division, complex_multiplication, fftd, real, rearrange
from .fhog import get_feature_maps, normalize_and_truncate, pca_feature_maps
from .geometry import Rect
from .imaging import bgr_to_lab, gray_float, resize, subwindow

_LAB_CENTROIDS = np.array(
    [
        [161.317504, 127.223401, 128.609333],
        [142.922425, 128.666965, 127.532319],
        [67.879757, 127.721830, 135.903311],
        [92.705062, 129.965717, 137.399500],
        [120.172257, 128.279647, 127.036493],
        [195.470568, 127.857070, 129.345415],
        [41.257102, 130.059468, 132.675336],
        [12.014861, 129.480555, 127.064714],
        [226.567086, 127.567831, 136.345727],
        [154.664210, 131.676606, 156.481669],
        [121.180447, 137.020793, 153.433743],
        [87.042204, 137.211742, 98.614874],
        [113.809537, 106.577104, 157.818094],
        [81.083293, 170.051905, 148.904079],
        [45.015485, 138.543124, 102.402528],
    ],
    dtype=np.float32,
)


@dataclass(frozen=True)
class ApceState:
    """Response-confidence bookkeeping carried between tracker updates.

    A detection is accepted when its peak exceeds beta_1 times the running
    mean peak and its APCE exceeds beta_2 times the running mean APCE; only
    accepted detections feed the running means (with rate alpha_apce).
    """

    beta_1: float = 0.5
    beta_2: float = 0.5
    alpha_apce: float = 0.1
    peak_value: float = 0.0
    mean_peak_value: float = 0.0
    mean_apce_value: float = 0.0
    current_apce_value: float = 0.0
    accepted: bool = True


@dataclass
class _FloatRect:
    x: float
    y: float
    width: float
    height: float


class KCFTracker:
    """Single-object correlation filter tracker on HOG, Lab or raw grey features."""

    def __init__(self, hog: bool = True, fixed_window: bool = True,
                 multiscale: bool = True, lab: bool = True) -> None:
        self.lambda_ = 0.0001
        self.padding = 2.5
        self.output_sigma_factor = 0.125
        self.scale_weight = 1.0

        if hog:
            self.interp_factor = 0.012
            self.sigma = 0.6
            self.cell_size = 4
            self._hog = True
            if lab:
                self.interp_factor = 0.005
                self.sigma = 0.4
                self.output_sigma_factor = 0.1
                self._lab = True
            else:
                self._lab = False
        else:
            self.interp_factor = 0.075
            self.sigma = 0.2
            self.cell_size = 1
            self._hog = False
            self._lab = False
            if lab:
                warnings.warn("Lab features are only used with HOG features.", stacklevel=2)
        self.cell_size_sq = self.cell_size * self.cell_size

        if multiscale:
            self.template_size = 96
            self.scale_step = 1.05
            self.scale_weight = 0.95
        elif fixed_window:
            self.template_size = 96
            self.scale_step = 1.0
        else:
            self.template_size = 1
            self.scale_step = 1.0

        self._roi = _FloatRect(0.0, 0.0, 0.0, 0.0)
        self._scale = 1.0
        self._tmpl_sz: tuple[int, int] | None = None
        self._size_patch = (0, 0, 0)
        self._hann: np.ndarray | None = None
        self._tmpl: np.ndarray | None = None
        self._prob: np.ndarray | None = None
        self._alphaf: np.ndarray | None = None

    # ------------------------------------------------------------------ public

    def init(self, roi: Rect, image: np.ndarray) -> np.ndarray:
        """Start tracking roi in image; returns the target's appearance features."""
        self._set_roi(roi)
        tmpl, appearance = self._features(image, init_hann=True)
        self._tmpl = tmpl
        rows, cols, _ = self._size_patch
        self._prob = self._gaussian_peak(rows, cols)
        self._alphaf = np.zeros((rows, cols), dtype=np.complex64)
        self._train(tmpl, 1.0)
        return appearance

    def roi_feature(self, roi: Rect, image: np.ndarray) -> np.ndarray:
        """Return the appearance features of roi in image without training."""
        self._set_roi(roi)
        _, appearance = self._features(image, init_hann=True)
        return appearance

    def update(self, image: np.ndarray, apce: ApceState
               ) -> tuple[Rect, ApceState, np.ndarray | None]:
        """Locate the target in a new frame.

        Returns the new bounding box, the updated confidence state and, when
        the detection was accepted and the model retrained, the new appearance.
        """
        if self._tmpl is None:
            raise RuntimeError("tracker has not been initialised")
        rows, cols = np.asarray(image).shape[:2]
        roi = self._roi
        if roi.x + roi.width <= 0:
            roi.x = -roi.width + 1
        if roi.y + roi.height <= 0:
            roi.y = -roi.height + 1
        if roi.x >= cols - 1:
            roi.x = cols - 2
        if roi.y >= rows - 1:
            roi.y = rows - 2

        cx = roi.x + roi.width / 2.0
        cy = roi.y + roi.height / 2.0

        features, _ = self._features(image, init_hann=False, scale_adjust=1.0)
        res, state = self._detect(self._tmpl, features, apce)

        if self.scale_step != 1:
            features, _ = self._features(image, init_hann=False,
                                         scale_adjust=1.0 / self.scale_step)
            new_res, new_state = self._detect(self._tmpl, features, apce)
            if self.scale_weight * new_state.peak_value > state.peak_value:
                res, state = new_res, new_state
                self._scale /= self.scale_step
                roi.width /= self.scale_step
                roi.height /= self.scale_step

            features, _ = self._features(image, init_hann=False,
                                         scale_adjust=self.scale_step)
            new_res, new_state = self._detect(self._tmpl, features, apce)
            if self.scale_weight * new_state.peak_value > state.peak_value:
                res, state = new_res, new_state
                self._scale *= self.scale_step
                roi.width *= self.scale_step
                roi.height *= self.scale_step

        roi.x = cx - roi.width / 2.0 + res[0] * self.cell_size * self._scale
        roi.y = cy - roi.height / 2.0 + res[1] * self.cell_size * self._scale

        if roi.x >= cols - 1:
            roi.x = cols - 1
        if roi.y >= rows - 1:
            roi.y = rows - 1
        if roi.x + roi.width <= 0:
            roi.x = -roi.width + 2
        if roi.y + roi.height <= 0:
            roi.y = -roi.height + 2

        appearance = None
        if state.accepted:
            x, appearance = self._features(image, init_hann=False)
            self._train(x, self.interp_factor)

        box = Rect(round(roi.x), round(roi.y), round(roi.width), round(roi.height))
        return box, state, appearance

    def sub_pixel_peak(self, left: float, center: float, right: float) -> float:
        """Offset of a parabola's vertex through three neighbouring samples."""
        divisor = 2 * center - right - left
        if divisor == 0:
            return 0.0
        return 0.5 * (right - left) / divisor

    # ----------------------------------------------------------------- helpers

    def _set_roi(self, roi: Rect) -> None:
        if roi.width <= 0 or roi.height <= 0:
            raise ValueError("region of interest must have a positive size")
        self._roi = _FloatRect(float(roi.x), float(roi.y), float(roi.width), float(roi.height))

    def _features(self, image: np.ndarray, init_hann: bool,
                  scale_adjust: float = 1.0) -> tuple[np.ndarray, np.ndarray]:
        """Extract windowed features and the raw appearance around the current roi."""
        roi = self._roi
        cx = roi.x + roi.width / 2.0
        cy = roi.y + roi.height / 2.0

        if init_hann:
            padded_w = int(roi.width * self.padding)
            padded_h = int(roi.height * self.padding)
            if self.template_size > 1:
                largest = padded_w if padded_w >= padded_h else padded_h
                self._scale = largest / float(self.template_size)
                tw = int(padded_w / self._scale)
                th = int(padded_h / self._scale)
            else:
                tw, th = padded_w, padded_h
                self._scale = 1.0
            step = 2 * self.cell_size
            if self._hog:
                tw = (tw // step) * step + step
                th = (th // step) * step + step
            else:
                tw = (tw // 2) * 2
                th = (th // 2) * 2
            self._tmpl_sz = (tw, th)
        elif self._tmpl_sz is None:
            raise RuntimeError("tracker has not been initialised")

        tw, th = self._tmpl_sz
        ew = int(scale_adjust * self._scale * tw)
        eh = int(scale_adjust * self._scale * th)
        ex = int(cx - ew // 2)
        ey = int(cy - eh // 2)

        z = subwindow(image, Rect(ex, ey, ew, eh), replicate=True)
        if z.shape[1] != tw or z.shape[0] != th:
            z = resize(z, tw, th)

        if self._hog:
            fmap = pca_feature_maps(normalize_and_truncate(get_feature_maps(z, self.cell_size), 0.2))
            size_y, size_x, nf = fmap.size_y, fmap.size_x, fmap.num_features
            features = np.ascontiguousarray(fmap.data.reshape(size_y * size_x, nf).T)
            if self._lab:
                features = np.vstack([features, self._lab_features(z, size_y, size_x)])
                nf += _LAB_CENTROIDS.shape[0]
            self._size_patch = (size_y, size_x, nf)
        else:
            features = gray_float(z) - np.float32(0.5)
            self._size_patch = (z.shape[0], z.shape[1], 1)

        if init_hann:
            self._hann = self._hanning()

        appearance = features.copy()
        return (self._hann * features).astype(np.float32), appearance

    def _lab_features(self, z: np.ndarray, size_y: int, size_x: int) -> np.ndarray:
        """Per-cell histogram of nearest Lab centroids over the inner cells."""
        c = self.cell_size
        rows, cols = z.shape[:2]
        ny = len(range(c, rows - c, c))
        nx = len(range(c, cols - c, c))
        if ny * nx != size_y * size_x:
            raise ValueError("Lab cell grid does not match the HOG grid")
        lab = bgr_to_lab(z).astype(np.float32)[c:c + ny * c, c:c + nx * c]
        diff = lab[:, :, None, :] - _LAB_CENTROIDS[None, None, :, :]
        nearest = np.argmin(np.sum(diff * diff, axis=-1, dtype=np.float32), axis=-1)
        yy, xx = np.indices(nearest.shape)
        cells = (yy // c) * nx + xx // c
        out = np.zeros((_LAB_CENTROIDS.shape[0], ny * nx), dtype=np.float32)
        np.add.at(out, (nearest.ravel(), cells.ravel()), np.float32(1.0 / self.cell_size_sq))
        return out

    def _hanning(self) -> np.ndarray:
        rows, cols, nf = self._size_patch
        with np.errstate(divide="ignore", invalid="ignore"):
            h1 = 0.5 * (1 - np.cos(2 * np.pi * np.arange(cols) / (cols - 1)))
            h2 = 0.5 * (1 - np.cos(2 * np.pi * np.arange(rows) / (rows - 1)))
        hann2d = np.outer(h2, h1).astype(np.float32)
        if self._hog:
            return np.tile(hann2d.reshape(1, -1), (nf, 1))
        return hann2d

    def _gaussian_correlation(self, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
        rows, cols, nf = self._size_patch
        if self._hog:
            a = fftd(x1.reshape(nf, rows, cols))
            b = fftd(x2.reshape(nf, rows, cols))
            spectrum = (a * np.conj(b)).sum(axis=0)
        else:
            spectrum = fftd(x1) * np.conj(fftd(x2))
        c = real(rearrange(fftd(spectrum, backwards=True))).astype(np.float32)
        energy = float(np.sum(x1 * x1, dtype=np.float64) + np.sum(x2 * x2, dtype=np.float64))
        d = np.maximum((energy - 2.0 * c) / (rows * cols * nf), 0)
        return np.exp(-d / (self.sigma * self.sigma)).astype(np.float32)

    def _gaussian_peak(self, size_y: int, size_x: int) -> np.ndarray:
        output_sigma = np.sqrt(float(size_x * size_y)) / self.padding * self.output_sigma_factor
        mult = -0.5 / (output_sigma * output_sigma)
        ih = np.arange(size_y) - size_y // 2
        jh = np.arange(size_x) - size_x // 2
        dist = ih[:, None] ** 2 + jh[None, :] ** 2
        return fftd(np.exp(mult * dist).astype(np.float32))

    def _train(self, x: np.ndarray, factor: float) -> None:
        k = self._gaussian_correlation(x, x)
        alphaf = complex_division(self._prob, fftd(k) + self.lambda_)
        self._tmpl = ((1 - factor) * self._tmpl + factor * x).astype(np.float32)
        self._alphaf = ((1 - factor) * self._alphaf + factor * alphaf).astype(np.complex64)

    def _detect(self, z: np.ndarray, x: np.ndarray,
                apce: ApceState) -> tuple[tuple[float, float], ApceState]:
        k = self._gaussian_correlation(x, z)
        res = real(fftd(complex_multiplication(self._alphaf, fftd(k)), backwards=True))
        res = res.astype(np.float32)
        rows, cols = res.shape

        py, px = divmod(int(np.argmax(res)), cols)
        max_val = float(res[py, px])
        min_val = float(res.min())
        mean_diff = np.mean((res.astype(np.float64) - min_val) ** 2)
        with np.errstate(divide="ignore", invalid="ignore"):
            current_apce = float(np.float64((max_val - min_val) ** 2) / mean_diff)

        if (max_val > apce.beta_1 * apce.mean_peak_value
                and current_apce > apce.beta_2 * apce.mean_apce_value):
            a = apce.alpha_apce
            state = replace(
                apce,
                peak_value=max_val,
                current_apce_value=current_apce,
                accepted=True,
                mean_apce_value=(1 - a) * apce.mean_apce_value + a * current_apce,
                mean_peak_value=(1 - a) * apce.mean_peak_value + a * max_val,
            )
        else:
            state = replace(apce, peak_value=max_val,
                            current_apce_value=current_apce, accepted=False)

        px_f, py_f = float(px), float(py)
        if 0 < px < cols - 1:
            px_f += self.sub_pixel_peak(float(res[py, px - 1]), max_val, float(res[py, px + 1]))
        if 0 < py < rows - 1:
            py_f += self.sub_pixel_peak(float(res[py - 1, px]), max_val, float(res[py + 1, px]))
        return (px_f - cols // 2, py_f - rows // 2), state