"""Multi-object tracking: a pool of correlation-filter trackers matched to detections."""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np

from .detect import MIN_IOU_REQ, FdObject
from .geometry import Rect, iou
from .imaging import draw_rectangle, draw_text
from .kcf import ApceState, KCFTracker

TCR_RUNN = 0x01 << 2
"""The tracker is running; values up to TCR_RUNN_3 count unconfirmed detections."""

TCR_RUNN_3 = TCR_RUNN + 2
"""Last sub-state of TCR_RUNN before an unmatched tracker is dropped."""

TCR_READY = 0x01 << 3
"""The tracker is free to use."""

TCR_LOST = 0x01 << 4
"""The tracker has lost its object."""

TCR_LOST_3 = TCR_LOST + 3

INVALID_INDEX = -1
"""Index meaning no tracker."""

MAX_TCR = 20
"""Default number of trackers in the pool."""

_RED = (0, 0, 255)
_GREEN = (0, 255, 0)


class Tracking:
    """One slot of the tracker pool: a correlation filter plus its bookkeeping."""

    def __init__(self, id: int, min_iou_req: float = MIN_IOU_REQ) -> None:
        self.id = id
        self.min_iou_req = min_iou_req
        self.state = TCR_READY
        self.roi = Rect()
        self.score = 0.0
        self.appearance: np.ndarray | None = None
        self.apce = ApceState()
        self._kcf: KCFTracker | None = None

    @property
    def apce_value(self) -> float:
        """APCE of the latest response map."""
        return self.apce.current_apce_value

    @property
    def peak(self) -> float:
        """Peak of the latest response map."""
        return self.apce.peak_value

    @property
    def apce_accepted(self) -> bool:
        """Whether the latest detection passed the confidence check."""
        return self.apce.accepted

    def update(self, frame: np.ndarray) -> Rect:
        """Track into frame, annotate frame in place and return the new box."""
        if self._kcf is None:
            raise RuntimeError("tracker has not been started")
        bbox, self.apce, new_appearance = self._kcf.update(frame, self.apce)
        self.roi = bbox

        if self.apce.accepted:
            if new_appearance is not None:
                self.update_appearance(new_appearance)
            self.score = 1000.0 + self.apce.current_apce_value + self.apce.peak_value
        else:
            self.score = self.apce.current_apce_value + self.apce.peak_value

        title = ("id:%02d" % self.id)[:5]
        apce_text = ("APCE: %04.1f / %04.1f %s" % (
            self.apce.current_apce_value,
            self.apce.mean_apce_value,
            "T" if self.apce.accepted else "F",
        ))[:22]
        peak_text = ("Peak: %04.1f / %04.1f" % (
            self.apce.peak_value * 100,
            self.apce.mean_peak_value * 100,
        ))[:19]

        draw_text(frame, title, (bbox.x, bbox.y - 1), _RED)
        draw_text(frame, apce_text, (bbox.x, bbox.y + bbox.height + 13), _GREEN)
        draw_text(frame, peak_text, (bbox.x, bbox.y + bbox.height + 13 * 2), _GREEN)
        draw_rectangle(frame, bbox, _RED)
        return bbox

    def restart(
        self,
        first_frame: np.ndarray,
        roi: Rect,
        state: int = TCR_RUNN,
        hog: bool = True,
        fixed_window: bool = True,
        multiscale: bool = True,
        lab: bool = True,
    ) -> None:
        """Start a fresh filter on roi in first_frame."""
        self.roi = roi
        self.state = state
        self._kcf = KCFTracker(hog, fixed_window, multiscale, lab)
        self.appearance = self._kcf.init(roi, first_frame)

    def update_appearance(self, new_appearance: np.ndarray) -> None:
        """Blend new appearance features into the stored ones."""
        alpha = 0.075
        new = np.asarray(new_appearance, dtype=np.float32)
        if self.appearance is None:
            self.appearance = new.copy()
            return
        self.appearance = ((1.0 - alpha) * self.appearance + alpha * new).astype(np.float32)

    def is_same_object(self, bbox: Rect) -> bool:
        """True when bbox overlaps this tracker's box by more than the required IoU."""
        return iou(self.roi, bbox) > self.min_iou_req


class ObjectTracker:
    """A fixed pool of trackers kept in step with frame-difference detections."""

    def __init__(self, max_trackers: int = MAX_TCR, min_iou_req: float = MIN_IOU_REQ) -> None:
        if max_trackers < 1:
            raise ValueError("at least one tracker is needed")
        self.max_trackers = max_trackers
        self.min_iou_req = min_iou_req
        self.trackers = [Tracking(i) for i in range(max_trackers)]
        self.background_response: np.ndarray | None = None
        self._feature_kcf = KCFTracker(True, True, True, True)

    def tick(self, frame: np.ndarray, fd_objs: Sequence[FdObject] | None = None) -> None:
        """Advance every tracker one frame, matching them to fd_objs when given."""
        if not fd_objs:
            for tracker in self.trackers:
                if tracker.state & TCR_RUNN:
                    tracker.update(frame)
            return

        cost = self.cost_matrix(frame, fd_objs)
        matched_index = self.greedy_match(fd_objs, cost)
        matched = [False] * self.max_trackers

        for obj, index in zip(fd_objs, matched_index):
            if index != INVALID_INDEX:
                matched[index] = True
                tracker = self.trackers[index]
                tracker.state = TCR_RUNN
                tracker.update(frame)
            else:
                index = self.free_tracker_index()
                if index == INVALID_INDEX:
                    index = self.full_handler()
                matched[index] = True
                self.trackers[index].restart(frame, obj.result)

        # Newly started objects survive a few unmatched detections.
        for i, tracker in enumerate(self.trackers):
            if (tracker.state & TCR_RUNN) and not matched[i] and tracker.state < TCR_RUNN_3:
                tracker.state += 1
                matched[i] = True
                tracker.update(frame)

        for i, tracker in enumerate(self.trackers):
            if (tracker.state & TCR_RUNN) and not matched[i]:
                tracker.state = TCR_LOST

    def cost_matrix(self, frame: np.ndarray, fd_objs: Sequence[FdObject]) -> np.ndarray:
        """Matching cost of every tracker (rows) against every detection (columns).

        Costs lie in 0..1; trackers neither running nor lost keep the full cost 1.
        """
        cost = np.ones((self.max_trackers, len(fd_objs)), dtype=np.float32)
        max_iou_needed = 0.7
        max_appear_score_allowed = 0.5

        features = [self.feature(obj.result, frame).mean(axis=1) for obj in fd_objs]

        for y, tracker in enumerate(self.trackers):
            if not tracker.state & (TCR_RUNN | TCR_LOST):
                continue
            tcr_appearance = (
                None if tracker.appearance is None else tracker.appearance.mean(axis=1)
            )
            for x, obj in enumerate(fd_objs):
                if tcr_appearance is None or tcr_appearance.shape != features[x].shape:
                    appearance_score = 1.0
                else:
                    distance = float(np.linalg.norm(
                        tcr_appearance.astype(np.float64) - features[x].astype(np.float64)
                    ))
                    appearance_score = (
                        1.0 if distance > max_appear_score_allowed
                        else distance / max_appear_score_allowed
                    )
                overlap = iou(tracker.roi, obj.result)
                overlap = 1.0 if overlap > max_iou_needed else overlap
                cost[y, x] = 0.6 * (1.0 - overlap) + 0.4 * appearance_score
        return cost

    def greedy_match(self, fd_objs: Sequence[FdObject], cost: np.ndarray) -> list[int]:
        """Pair detections with trackers, cheapest first; unmatched ones get INVALID_INDEX."""
        n = len(fd_objs)
        cost = np.asarray(cost)
        matched = [INVALID_INDEX] * n
        tcr_used = [not (t.state & (TCR_RUNN | TCR_LOST)) for t in self.trackers]
        obj_used = [False] * n
        biggest_cost_allowed = 0.7

        while True:
            best_cost = 2.0
            best: tuple[int, int] | None = None
            for y in range(self.max_trackers):
                if tcr_used[y]:
                    continue
                for x in range(n):
                    if obj_used[x]:
                        continue
                    value = float(cost[y, x])
                    if value > biggest_cost_allowed:
                        continue
                    if value < best_cost:
                        best_cost = value
                        best = (y, x)
            if best is None:
                break
            y, x = best
            matched[x] = y
            tcr_used[y] = True
            obj_used[x] = True
        return matched

    def full_handler(self) -> int:
        """Index of the tracker with the lowest score, to be reused when all are busy."""
        return min(range(self.max_trackers), key=lambda i: self.trackers[i].score)

    def free_tracker_index(self) -> int:
        """First ready tracker, else first lost one, else INVALID_INDEX."""
        for flag in (TCR_READY, TCR_LOST):
            for i, tracker in enumerate(self.trackers):
                if tracker.state & flag:
                    return i
        return INVALID_INDEX

    def rois(self) -> list[Rect]:
        """Boxes of all running trackers."""
        return [t.roi for t in self.trackers if t.state & TCR_RUNN]

    def add_background_response(self, backgrnd_resp: np.ndarray | None) -> None:
        """Keep a copy of the detector's background response."""
        self.background_response = None if backgrnd_resp is None else np.array(backgrnd_resp)

    def feature(self, roi: Rect, frame: np.ndarray) -> np.ndarray:
        """Appearance features of roi in frame."""
        return self._feature_kcf.roi_feature(roi, frame)


def running(trackers: Iterable[Tracking]) -> list[Tracking]:
    """Trackers currently in a running state."""
    return [t for t in trackers if t.state & TCR_RUNN]