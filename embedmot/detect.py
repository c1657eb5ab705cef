"""Moving-object detection by two- and three-frame differencing against a learned background.

Frame differencing only works for a static camera. Objects tend to move
consistently from frame to frame, while noise usually shows up between two
frames only, so OR-ing two consecutive frame differences strengthens objects.
"""

from __future__ import annotations

import math
from typing import Callable, Iterable

import numpy as np
from scipy import ndimage

from .geometry import Rect, iou
from .imaging import to_gray

FD_THRESHOLD = 15
"""Grey-level change that counts as motion between frames."""

BACKGROUND_THRESHOLD = 35
"""Grey-level difference from the background that counts as foreground."""

MIN_BBOX_HEIGHT = 20
"""Detections must be taller than this."""

MIN_BBOX_WIDTH = 10
"""Detections must be wider than this."""

DETECT_INTERVAL = 2
"""Objects are detected once every this many frames."""

MIN_DETECT_FRAME_REQ = DETECT_INTERVAL // 2 + 1
"""Minimum number of frames an object must be seen in."""

MIN_IOU_REQ = 0.5
"""Minimum overlap for two boxes to be taken as the same object."""

_EXPAND_RATIO = np.float32(1.2)


def _rect_kernel(size: int) -> np.ndarray:
    return np.ones((size, size), dtype=bool)


def _cross_kernel(size: int) -> np.ndarray:
    kernel = np.zeros((size, size), dtype=bool)
    kernel[size // 2, :] = True
    kernel[:, size // 2] = True
    return kernel


_KERNEL_3 = _rect_kernel(3)
_KERNEL_9 = _rect_kernel(9)
_CROSS_3 = _cross_kernel(3)
_CROSS_6 = _cross_kernel(6)


def _neighbourhood(
    img: np.ndarray,
    kernel: np.ndarray,
    reducer: Callable[[np.ndarray, np.ndarray], np.ndarray],
    fill: int,
) -> np.ndarray:
    """Combine the image shifted by every kernel offset around the centre anchor.

    Pixels outside the image take ``fill``, so they never win the reduction.
    """
    rows, cols = img.shape
    kh, kw = kernel.shape
    ay, ax = kh // 2, kw // 2
    padded = np.pad(img, ((ay, kh - 1 - ay), (ax, kw - 1 - ax)), constant_values=fill)
    out = None
    for dy, dx in zip(*np.nonzero(kernel)):
        window = padded[dy:dy + rows, dx:dx + cols]
        out = window.copy() if out is None else reducer(out, window)
    return out


def _dilate(img: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    return _neighbourhood(img, kernel, np.maximum, 0)


def _erode(img: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    return _neighbourhood(img, kernel, np.minimum, 255)


def _open(img: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    return _dilate(_erode(img, kernel), kernel)


def _close(img: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    return _erode(_dilate(img, kernel), kernel)


def _median(img: np.ndarray) -> np.ndarray:
    return ndimage.median_filter(img, size=5, mode="nearest")


def _absdiff(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.abs(a.astype(np.int16) - b.astype(np.int16)).astype(np.uint8)


def _threshold(img: np.ndarray, level: int) -> np.ndarray:
    return np.where(img > level, 255, 0).astype(np.uint8)


def _expanded(rec: Rect, image_rect: Rect) -> Rect:
    """Grow rec by the background-mask ratio about its centre, clipped to the image."""
    cx = int(rec.x + rec.width / 2.0)
    cy = int(rec.y + rec.height / 2.0)
    w = int(np.float32(rec.width) * _EXPAND_RATIO)
    h = int(np.float32(rec.height) * _EXPAND_RATIO)
    return Rect(int(cx - 0.5 * w), int(cy - 0.5 * h), w, h) & image_rect


class FdObject:
    """An object found by frame differencing, with the boxes gathered for it."""

    def __init__(
        self,
        bbox: Rect,
        image_rect: Rect,
        min_iou_req: float = MIN_IOU_REQ,
        min_frm_req: int = MIN_DETECT_FRAME_REQ,
    ) -> None:
        self.result = bbox
        self.image_rect = image_rect
        self.rects: list[Rect] = []
        self.min_iou_req = min_iou_req
        self.min_frm_req = min_frm_req

    def add_rect(self, bbox: Rect) -> None:
        """Record another box seen for this object."""
        self.rects.append(bbox)

    def refine(self) -> bool:
        """Stretch the result along the direction of motion of the two recorded boxes.

        The box grows by a tenth of the current box size on the side it moves
        towards and is clipped to the image. Returns True when the result was
        changed; with other than two recorded boxes, or when clipping leaves
        nothing, the result is kept and False is returned.
        """
        if len(self.rects) != 2:
            return False
        pre, cur = self.rects
        original = self.result

        pre_cx, pre_cy = int(pre.x + pre.width / 2.0), int(pre.y + pre.height / 2.0)
        cur_cx, cur_cy = int(cur.x + cur.width / 2.0), int(cur.y + cur.height / 2.0)
        dir_x, dir_y = cur_cx - pre_cx, cur_cy - pre_cy

        norm = math.hypot(dir_x, dir_y)
        expand_ratio = 0.1
        if norm > 0:
            dx = dir_x / norm * expand_ratio * cur.width
            dy = dir_y / norm * expand_ratio * cur.height
        else:
            dx = dy = 0.0

        tl_x, tl_y = float(original.x), float(original.y)
        br_x = float(original.x + original.width)
        br_y = float(original.y + original.height)
        if dx > 0:
            br_x += dx
        else:
            tl_x += dx
        if dy > 0:
            br_y += dy
        else:
            tl_y += dy

        candidate = Rect(int(tl_x), int(tl_y), int(br_x - tl_x), int(br_y - tl_y))
        clipped = candidate & self.image_rect
        if clipped.is_empty():
            self.result = original
            return False
        self.result = clipped
        return True

    def is_same_object(self, bbox: Rect) -> bool:
        """True when bbox overlaps the result by more than the required IoU."""
        return iou(self.result, bbox) > self.min_iou_req


class ObjectDetector:
    """Detects moving objects in a stream of BGR frames from a static camera.

    Frames are processed in periods; the first two frames of each period give
    two frame differences, and the second one also produces detections.
    """

    def __init__(self, frame: np.ndarray, period: int = DETECT_INTERVAL) -> None:
        if period < 2:
            raise ValueError("period must be greater than 1")
        self._period = period
        self._clock_bound = (0xFFF0 + period) & 0xFFFF
        self._clock = period & 0xFFFF

        first = to_gray(frame)
        self._frames: list[np.ndarray | None] = [None] * period
        self._frames[period - 1] = first

        self._background = np.zeros(first.shape, dtype=np.float32)
        self._background_u8 = np.zeros(first.shape, dtype=np.uint8)

        self._fd_diff: list[np.ndarray | None] = [None, None]
        self._fd_resp: list[np.ndarray | None] = [None, None]
        self._fd_obj_rects: list[list[Rect]] = [[], []]
        self._three_fd_resp: np.ndarray | None = None
        self._background_resp: list[np.ndarray | None] = [None, None]

        self._objs: list[FdObject] = []
        self._res: list[FdObject] = []
        self._tracked_rois: list[Rect] = []

        self._background_initialized = False
        self._background_init_counter = 7
        self._alpha_init = 0.8
        self._alpha = 0.1

    @property
    def period(self) -> int:
        """Number of frames per detection period."""
        return self._period

    @property
    def objects(self) -> list[FdObject]:
        """Objects found by the last successful detection."""
        return list(self._res)

    @property
    def background_initialized(self) -> bool:
        """True once the background model has seen enough frames to be used."""
        return self._background_initialized

    @property
    def background(self) -> np.ndarray:
        """The current 8-bit background estimate."""
        return self._background_u8.copy()

    def tick(self, frame: np.ndarray) -> bool:
        """Feed one BGR frame; returns True when new objects were detected."""
        cur_frame = to_gray(frame)
        rnd = self._clock % self._period
        self._frames[rnd] = cur_frame
        pre_frame = self._frames[(self._clock - 1) % self._period]

        if self._clock < self._clock_bound:
            self._clock += 1
        else:
            self._clock = 0

        if rnd > 1:
            return False
        if pre_frame is None:
            raise RuntimeError("no previous frame to compare with")

        two_fd_diff = _absdiff(_median(cur_frame), _median(pre_frame))
        self._fd_diff[rnd] = two_fd_diff
        two_fd_resp = _threshold(two_fd_diff, FD_THRESHOLD)

        if rnd == 1:
            three_fd_diff = self._fd_diff[0] | self._fd_diff[1]
            self._three_fd_resp = _threshold(three_fd_diff, FD_THRESHOLD)

        if self._background_initialized:
            backgrnd_resp = _threshold(
                _absdiff(cur_frame, self._background_u8), BACKGROUND_THRESHOLD
            )
            backgrnd_resp = _open(backgrnd_resp, _CROSS_3)
            backgrnd_resp = _close(backgrnd_resp, _CROSS_6)
            self._background_resp[rnd] = backgrnd_resp
            if self._three_fd_resp is not None:
                self._three_fd_resp = _dilate(self._three_fd_resp, _KERNEL_9)

        two_fd_resp = _close(two_fd_resp, _KERNEL_9)
        self._fd_resp[rnd] = two_fd_resp
        self._fd_obj_rects[rnd] = self.get_rects(two_fd_resp)

        if rnd != 1:
            return False

        rows, cols = cur_frame.shape
        image_rect = Rect(0, 0, cols, rows)
        final_resp = _close(self.final_response(), _KERNEL_3)
        self._objs.extend(FdObject(rect, image_rect) for rect in self.get_rects(final_resp))

        self.update_background(cur_frame)

        if self._objs:
            self._res = self._objs
            self._objs = []
            return True
        return False

    def frames_diff(
        self,
        cur_frame: np.ndarray,
        pre_frame: np.ndarray,
        pp_frame: np.ndarray | None = None,
        three_frame_diff: bool = False,
    ) -> np.ndarray:
        """Binary response of a two- or three-frame difference of grey frames.

        Once the background is known the response is also restricted to pixels
        that differ from it.
        """
        cur = np.asarray(cur_frame)
        pre = np.asarray(pre_frame)
        cur_pre_d = _absdiff(_median(cur), _median(pre))

        if three_frame_diff:
            if pp_frame is None:
                raise ValueError("a three-frame difference needs the frame before the previous one")
            pre_pp_d = _absdiff(pre, np.asarray(pp_frame))
            resp = _threshold(cur_pre_d | pre_pp_d, FD_THRESHOLD)
        else:
            resp = _threshold(cur_pre_d, FD_THRESHOLD)

        if self._background_initialized:
            resp = _dilate(_open(resp, _KERNEL_3), _KERNEL_9)
            backgrnd_diff = _threshold(_absdiff(cur, self._background_u8), BACKGROUND_THRESHOLD)
            return resp & backgrnd_diff
        return _close(resp, _KERNEL_9)

    def get_rects(self, resp: np.ndarray) -> list[Rect]:
        """Bounding boxes of the outermost blobs of a binary response that are big enough."""
        fg = np.asarray(resp) != 0
        if not fg.any():
            return []
        labels, _ = ndimage.label(fg, structure=np.ones((3, 3), dtype=bool))

        # Blobs lying inside a hole of another blob are not outer ones.
        padded_bg = np.pad(~fg, 1, constant_values=True)
        bg_labels, _ = ndimage.label(padded_bg)
        outside = bg_labels == bg_labels[0, 0]
        touching = ndimage.binary_dilation(outside)[1:-1, 1:-1] & fg
        external = {int(label) for label in np.unique(labels[touching])}

        objects = []
        for label, slices in enumerate(ndimage.find_objects(labels), start=1):
            if slices is None or label not in external:
                continue
            ys, xs = slices
            bbox = Rect(xs.start, ys.start, xs.stop - xs.start, ys.stop - ys.start)
            if bbox.height > MIN_BBOX_HEIGHT and bbox.width > MIN_BBOX_WIDTH:
                objects.append(bbox)
        return objects

    def final_response(self) -> np.ndarray:
        """The response detections are taken from in the current period."""
        if self._background_initialized:
            backgrnd = self._background_resp[1]
            if backgrnd is None or self._three_fd_resp is None:
                raise RuntimeError("no background response collected yet")
            return backgrnd & self._three_fd_resp
        if self._fd_resp[1] is None:
            raise RuntimeError("no frame difference collected yet")
        return self._fd_resp[1].copy()

    def background_response(self) -> np.ndarray | None:
        """The last background difference response, or None before the background is known."""
        resp = self._background_resp[1]
        return None if resp is None else resp.copy()

    def update_background(self, frame: np.ndarray) -> None:
        """Blend a grey frame into the background, leaving detected and tracked areas alone."""
        gray = to_gray(frame)
        rows, cols = gray.shape
        image_rect = Rect(0, 0, cols, rows)
        mask = np.ones((rows, cols), dtype=bool)

        rois: Iterable[Rect] = [obj.result for obj in self._objs] + self._tracked_rois
        for rec in rois:
            area = _expanded(rec, image_rect)
            if not area.is_empty():
                mask[area.y:area.y + area.height, area.x:area.x + area.width] = False

        alpha = self._alpha
        if not self._background_initialized:
            self._background_init_counter -= 1
            if self._background_init_counter == 0:
                self._background_initialized = True
            alpha = self._alpha_init

        blended = (1.0 - alpha) * self._background.astype(np.float64) + alpha * gray.astype(np.float64)
        self._background[mask] = blended[mask].astype(np.float32)
        self._background_u8 = np.clip(np.rint(self._background), 0, 255).astype(np.uint8)

    def add_tracked_rois(self, rois: Iterable[Rect]) -> None:
        """Set the regions held by trackers; they are kept out of background updates."""
        self._tracked_rois = list(rois)