"""Run detection and tracking over a frame source and save the annotated frames."""

from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import imageio.v3 as iio
import numpy as np

from .detect import DETECT_INTERVAL, ObjectDetector
from .imaging import draw_rectangle
from .track import MAX_TCR, ObjectTracker

SEQUENCE_NAME = "PETS09-S2L1"
"""Name of the default test sequence."""

IMAGE_DIR = "img1"
"""Directory of the default sequence that holds its images."""

IMAGE_EXT = ".jpg"
"""File extension of the default sequence's images."""

FRAME_RATE = 10
"""Frame rate of the default sequence."""

DEFAULT_SOURCE = f"../{SEQUENCE_NAME}/{IMAGE_DIR}/%06d{IMAGE_EXT}"
"""Image-sequence pattern used when no source is given."""

_PATTERN = re.compile(r"%0?\d*d")
_FIRST_INDEX_SEARCH = 1000
_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".gif", ".webp", ".ppm", ".pgm"}
_DETECTION_COLOR = (255, 0, 0)
_OPEN_ERRORS = (OSError, ValueError, RuntimeError, ImportError, StopIteration)


def _to_bgr(frame: np.ndarray) -> np.ndarray:
    """Turn an RGB(A) or grey image as read from disk into a writable 8-bit BGR frame."""
    arr = np.asarray(frame)
    if arr.dtype == np.uint16:
        arr = (arr // 257).astype(np.uint8)
    elif arr.dtype != np.uint8:
        arr = np.clip(np.rint(arr), 0, 255).astype(np.uint8)
    if arr.ndim == 2:
        arr = np.stack([arr] * 3, axis=-1)
    elif arr.ndim == 3 and arr.shape[2] == 1:
        arr = np.repeat(arr, 3, axis=2)
    elif arr.ndim == 3 and arr.shape[2] >= 3:
        arr = arr[..., 2::-1]
    else:
        raise ValueError(f"unsupported frame shape {arr.shape}")
    return np.ascontiguousarray(arr)


def _open_stream(uri: str | Path, source: str) -> Iterator[np.ndarray]:
    """Open a video or camera eagerly so that failures surface at once."""
    try:
        frames = iio.imiter(uri)
        first = next(frames)
    except _OPEN_ERRORS as exc:
        raise FileNotFoundError(f"cannot open input: {source}") from exc

    def generate() -> Iterator[np.ndarray]:
        yield _to_bgr(first)
        for frame in frames:
            yield _to_bgr(frame)

    return generate()


def _open_sequence(pattern: str) -> Iterator[np.ndarray]:
    """Open a numbered image sequence; reading stops at the first missing index."""
    start = next(
        (i for i in range(_FIRST_INDEX_SEARCH) if Path(pattern % i).is_file()),
        None,
    )
    if start is None:
        raise FileNotFoundError(f"cannot open input: {pattern}")

    def generate() -> Iterator[np.ndarray]:
        index = start
        while Path(pattern % index).is_file():
            yield _to_bgr(iio.imread(pattern % index))
            index += 1

    return generate()


def _open_directory(path: Path) -> Iterator[np.ndarray]:
    files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in _IMAGE_SUFFIXES)
    if not files:
        raise FileNotFoundError(f"cannot open input: {path}")
    return (_to_bgr(iio.imread(f)) for f in files)


def iter_frames(source: str | Path) -> Iterator[np.ndarray]:
    """Open source and return an iterator over its frames as 8-bit BGR arrays.

    A source starting with a digit is a camera index; a path holding a
    printf-style number such as ``%06d`` is an image sequence; a directory
    yields its images in name order; any other file is read as a video.
    Raises FileNotFoundError when the source cannot be opened.
    """
    text = str(source)
    camera = re.match(r"\d+", text)
    if camera:
        return _open_stream(f"<video{int(camera.group())}>", text)
    if _PATTERN.search(text):
        return _open_sequence(text)
    path = Path(text)
    if path.is_dir():
        return _open_directory(path)
    if path.is_file():
        return _open_stream(path, text)
    raise FileNotFoundError(f"cannot open input: {text}")


def _save(frame: np.ndarray, output_dir: Path, index: int) -> None:
    iio.imwrite(output_dir / f"{index:06d}.png", np.ascontiguousarray(frame[..., ::-1]))


def mot(source: str | Path, output_dir: str | Path | None = None) -> bool:
    """Detect and track moving objects through source.

    Every frame after the first is annotated with tracker boxes (red) and
    fresh detections (blue) and, when output_dir is given, saved there as
    numbered PNG files. Returns False when the source cannot be opened.
    """
    try:
        frames: Iterable[np.ndarray] = iter_frames(source)
    except FileNotFoundError:
        print(f"ERRO: Failed to Open Input: {source}", file=sys.stderr)
        return False

    frames = iter(frames)
    first = next(frames, None)
    if first is None:
        raise RuntimeError("Failed to read first frame.")

    out: Path | None = None
    if output_dir is not None:
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

    detector = ObjectDetector(first, DETECT_INTERVAL)
    tracker = ObjectTracker(MAX_TCR)

    for index, frame in enumerate(frames):
        if detector.tick(frame):
            fd_objs = detector.objects
            tracker.add_background_response(detector.background_response())
            tracker.tick(frame, fd_objs)
            detector.add_tracked_rois(tracker.rois())
            for obj in fd_objs:
                draw_rectangle(frame, obj.result, _DETECTION_COLOR)
        else:
            tracker.add_background_response(detector.background_response())
            tracker.tick(frame)
            detector.add_tracked_rois(tracker.rois())

        if out is not None:
            _save(frame, out, index)

    return True


def main(argv: Sequence[str] | None = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        prog="embedmot",
        description="Detect and track moving objects seen by a static camera.",
    )
    parser.add_argument(
        "source",
        nargs="?",
        default=DEFAULT_SOURCE,
        help="camera index, video file, image directory or numbered image pattern",
    )
    parser.add_argument("-o", "--output", default=None, help="directory for annotated frames")
    args = parser.parse_args(argv)
    return 0 if mot(args.source, args.output) else 1