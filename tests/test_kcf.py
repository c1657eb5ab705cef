import numpy as np
import pytest

from embedmot.geometry import Rect
from embedmot.kcf import ApceState, KCFTracker


def _frame(x, y, size=30, shape=(140, 180)):
    rng = np.random.default_rng(7)
    patch = rng.integers(0, 256, (size, size, 3), dtype=np.uint8)
    img = np.full(shape + (3,), 90, dtype=np.uint8)
    img[y:y + size, x:x + size] = patch
    return img


ROI = Rect(70, 50, 30, 30)


def test_sub_pixel_peak_symmetric_and_flat():
    tracker = KCFTracker(False, True, False, False)
    assert tracker.sub_pixel_peak(0.3, 1.0, 0.3) == 0.0
    assert tracker.sub_pixel_peak(1.0, 1.0, 1.0) == 0.0


def test_sub_pixel_peak_antisymmetric():
    tracker = KCFTracker(False, True, False, False)
    forward = tracker.sub_pixel_peak(0.2, 1.0, 0.6)
    backward = tracker.sub_pixel_peak(0.6, 1.0, 0.2)
    assert forward > 0
    assert forward == pytest.approx(-backward)


def test_parameters_hog_lab():
    tracker = KCFTracker(True, True, True, True)
    assert tracker.cell_size == 4
    assert tracker.interp_factor == pytest.approx(0.005)
    assert tracker.sigma == pytest.approx(0.4)
    assert tracker.template_size == 96
    assert tracker.scale_step == pytest.approx(1.05)


def test_parameters_raw_ignores_lab():
    with pytest.warns(UserWarning):
        tracker = KCFTracker(False, True, False, True)
    assert tracker.cell_size == 1
    assert tracker.interp_factor == pytest.approx(0.075)
    assert tracker.scale_step == 1.0
    appearance = tracker.init(ROI, _frame(70, 50))
    assert appearance.ndim == 2
    assert appearance.shape == (96, 96)


def test_hog_appearance_rows():
    plain = KCFTracker(True, True, False, False).init(ROI, _frame(70, 50))
    with_lab = KCFTracker(True, True, False, True).init(ROI, _frame(70, 50))
    assert plain.shape[0] == 31
    assert with_lab.shape[0] == 31 + 15
    assert plain.shape[1] == with_lab.shape[1]
    assert np.allclose(with_lab[:31], plain)


def test_roi_feature_matches_init_appearance():
    frame = _frame(70, 50)
    init_app = KCFTracker(True, True, False, True).init(ROI, frame)
    feat = KCFTracker(True, True, False, True).roi_feature(ROI, frame)
    assert feat.shape == init_app.shape
    assert np.allclose(feat, init_app)


def test_lab_histogram_columns_sum_to_one():
    appearance = KCFTracker(True, True, False, True).init(ROI, _frame(70, 50))
    assert np.allclose(appearance[31:].sum(axis=0), 1.0)


def test_update_on_same_frame_stays():
    frame = _frame(70, 50)
    tracker = KCFTracker(True, True, False, False)
    init_app = tracker.init(ROI, frame)
    box, state, appearance = tracker.update(frame, ApceState())
    assert abs(box.x - ROI.x) <= 2
    assert abs(box.y - ROI.y) <= 2
    assert (box.width, box.height) == (ROI.width, ROI.height)
    assert state.accepted
    assert state.mean_apce_value == pytest.approx(0.1 * state.current_apce_value)
    assert state.mean_peak_value == pytest.approx(0.1 * state.peak_value)
    assert appearance.shape == init_app.shape


@pytest.mark.parametrize("hog", [True, False])
def test_update_follows_shift(hog):
    tracker = KCFTracker(hog, True, False, False)
    tracker.init(ROI, _frame(70, 50))
    box, _, _ = tracker.update(_frame(74, 50), ApceState())
    assert 2 <= box.x - ROI.x <= 6
    assert abs(box.y - ROI.y) <= 2


def test_update_rejected_keeps_means():
    frame = _frame(70, 50)
    tracker = KCFTracker(True, True, False, False)
    tracker.init(ROI, frame)
    start = ApceState(mean_peak_value=1e9, mean_apce_value=1e9)
    _, state, appearance = tracker.update(frame, start)
    assert not state.accepted
    assert appearance is None
    assert state.mean_peak_value == 1e9
    assert state.mean_apce_value == 1e9


def test_multiscale_on_same_frame_keeps_size():
    frame = _frame(70, 50)
    tracker = KCFTracker(True, True, True, False)
    tracker.init(ROI, frame)
    box, state, _ = tracker.update(frame, ApceState())
    assert abs(box.x - ROI.x) <= 3
    assert abs(box.y - ROI.y) <= 3
    assert 27 <= box.width <= 33
    assert state.accepted


def test_update_before_init_raises():
    with pytest.raises(RuntimeError):
        KCFTracker(True, True, False, False).update(_frame(70, 50), ApceState())


def test_init_rejects_empty_roi():
    with pytest.raises(ValueError):
        KCFTracker(True, True, False, False).init(Rect(10, 10, -5, 20), _frame(70, 50))