"""Fourier helpers on complex numpy arrays."""

from __future__ import annotations

import numpy as np


def _complex_dtype(arr: np.ndarray) -> np.dtype:
    return np.result_type(arr.dtype, np.complex64)


def fftd(img: np.ndarray, backwards: bool = False) -> np.ndarray:
    """2-D DFT of a real or complex array; the inverse is scaled by 1/N."""
    arr = np.asarray(img)
    dtype = _complex_dtype(arr)
    result = np.fft.ifft2(arr) if backwards else np.fft.fft2(arr)
    return result.astype(dtype)


def real(img: np.ndarray) -> np.ndarray:
    """Real part."""
    return np.real(np.asarray(img)).copy()


def imag(img: np.ndarray) -> np.ndarray:
    """Imaginary part (zeros for a real array)."""
    return np.imag(np.asarray(img)).copy()


def magnitude(img: np.ndarray) -> np.ndarray:
    """Element-wise absolute value."""
    return np.abs(np.asarray(img))


def complex_multiplication(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Element-wise complex product."""
    return np.asarray(a) * np.asarray(b)


def complex_division(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Element-wise division used by the tracker's training step.

    The real part is Re(a * conj(b)) / |b|^2; the imaginary part is
    (Im a * Re b + Re a * Im b) / |b|^2.
    """
    a = np.asarray(a)
    b = np.asarray(b)
    ar, ai = np.real(a), np.imag(a)
    br, bi = np.real(b), np.imag(b)
    divisor = 1.0 / (br * br + bi * bi)
    out = (ar * br + ai * bi) * divisor + 1j * ((ai * br + ar * bi) * divisor)
    return out.astype(np.result_type(a.dtype, b.dtype, np.complex64))


def rearrange(img: np.ndarray) -> np.ndarray:
    """Swap diagonal quadrants so the zero shift moves to the centre.

    Only the leading 2*(cols//2) by 2*(rows//2) block takes part.
    """
    out = np.array(img, copy=True)
    cy, cx = out.shape[0] // 2, out.shape[1] // 2
    q0 = out[:cy, :cx].copy()
    q1 = out[:cy, cx:2 * cx].copy()
    out[:cy, :cx] = out[cy:2 * cy, cx:2 * cx]
    out[cy:2 * cy, cx:2 * cx] = q0
    out[:cy, cx:2 * cx] = out[cy:2 * cy, :cx]
    out[cy:2 * cy, :cx] = q1
    return out


def normalized_log_transform(img: np.ndarray) -> np.ndarray:
    """Return log(|img| + 1)."""
    return np.log(np.abs(np.asarray(img)) + 1)