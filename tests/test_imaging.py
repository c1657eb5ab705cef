import numpy as np
import pytest

from embedmot.geometry import Rect
from embedmot.imaging import (
    bgr_to_lab,
    draw_rectangle,
    draw_text,
    get_border,
    gray_float,
    limit,
    resize,
    subwindow,
    to_gray,
)

BOUNDS = Rect(0, 0, 20, 10)


def test_limit_inside_unchanged():
    r = Rect(2, 3, 5, 4)
    assert limit(r, BOUNDS) == r


def test_limit_matches_intersection_when_overlapping():
    r = Rect(-5, 6, 30, 10)
    assert limit(r, BOUNDS) == r & BOUNDS


def test_limit_outside_is_empty():
    assert limit(Rect(50, 50, 5, 5), BOUNDS).is_empty()


def test_get_border_reconstructs_original():
    original = Rect(-3, -2, 30, 15)
    limited = limit(original, BOUNDS)
    border = get_border(original, limited)
    assert limited.x - border.x == original.x
    assert limited.y - border.y == original.y
    assert limited.x + limited.width + border.width == original.x + original.width
    assert limited.y + limited.height + border.height == original.y + original.height


def test_get_border_rejects_non_contained():
    with pytest.raises(ValueError):
        get_border(Rect(0, 0, 5, 5), Rect(-1, 0, 5, 5))


@pytest.fixture
def ramp():
    return np.arange(10 * 20, dtype=np.uint8).reshape(10, 20)


def test_subwindow_inside_equals_slice(ramp):
    out = subwindow(ramp, Rect(2, 3, 5, 4))
    np.testing.assert_array_equal(out, ramp[3:7, 2:7])


def test_subwindow_replicate_pads_edges(ramp):
    out = subwindow(ramp, Rect(-2, -3, 6, 7), replicate=True)
    assert out.shape == (7, 6)
    np.testing.assert_array_equal(out[0], out[3])
    np.testing.assert_array_equal(out[:, 0], out[:, 2])
    np.testing.assert_array_equal(out[3:, 2:], ramp[0:4, 0:4])


def test_subwindow_constant_pads_zero(ramp):
    out = subwindow(ramp + 1, Rect(17, 8, 5, 4))
    assert out.shape == (4, 5)
    assert np.all(out[2:, :] == 0)
    assert np.all(out[:, 3:] == 0)
    np.testing.assert_array_equal(out[:2, :3], (ramp + 1)[8:10, 17:20])


def test_subwindow_colour_shape(ramp):
    img = np.dstack([ramp, ramp, ramp])
    out = subwindow(img, Rect(-1, -1, 4, 4), replicate=True)
    assert out.shape == (4, 4, 3)


def test_subwindow_no_overlap_raises(ramp):
    with pytest.raises(ValueError):
        subwindow(ramp, Rect(100, 100, 5, 5))


def test_to_gray_neutral_pixels_keep_value():
    img = np.full((4, 5, 3), 77, dtype=np.uint8)
    gray = to_gray(img)
    assert gray.shape == (4, 5)
    assert gray.dtype == np.uint8
    assert np.all(gray == 77)


def test_to_gray_single_channel_is_copy(ramp):
    gray = to_gray(ramp)
    np.testing.assert_array_equal(gray, ramp)
    gray[0, 0] = 99
    assert ramp[0, 0] != 99


def test_gray_float_range():
    img = np.zeros((3, 3, 3), dtype=np.uint8)
    img[0, 0] = 255
    out = gray_float(img)
    assert out.dtype == np.float32
    assert out[0, 0] == pytest.approx(1.0)
    assert out.min() >= 0.0 and out.max() <= 1.0


def test_resize_shape_and_dtype(ramp):
    out = resize(ramp, 7, 13)
    assert out.shape == (13, 7)
    assert out.dtype == np.uint8


def test_resize_same_size_is_identity(ramp):
    np.testing.assert_array_equal(resize(ramp, 20, 10), ramp)


def test_resize_constant_stays_constant():
    img = np.full((6, 8, 3), 42, dtype=np.uint8)
    out = resize(img, 17, 3)
    assert out.shape == (3, 17, 3)
    assert np.all(out == 42)


def test_resize_rejects_bad_size(ramp):
    with pytest.raises(ValueError):
        resize(ramp, 0, 5)


def test_bgr_to_lab_black_and_white():
    img = np.zeros((1, 2, 3), dtype=np.uint8)
    img[0, 1] = 255
    lab = bgr_to_lab(img)
    np.testing.assert_array_equal(lab[0, 0], [0, 128, 128])
    np.testing.assert_array_equal(lab[0, 1], [255, 128, 128])


def test_bgr_to_lab_gray_is_neutral():
    img = np.full((2, 2, 3), 100, dtype=np.uint8)
    lab = bgr_to_lab(img)
    assert lab.shape == (2, 2, 3)
    np.testing.assert_allclose(lab[..., 1:].astype(int), 128, atol=1)
    np.testing.assert_array_equal(lab, np.broadcast_to(lab[0, 0], lab.shape))


def test_bgr_to_lab_rejects_gray(ramp):
    with pytest.raises(ValueError):
        bgr_to_lab(ramp)


def test_draw_rectangle_outline():
    img = np.zeros((10, 10, 3), dtype=np.uint8)
    out = draw_rectangle(img, Rect(2, 3, 5, 4), (0, 0, 255))
    assert out is img
    np.testing.assert_array_equal(img[3, 2], [0, 0, 255])
    np.testing.assert_array_equal(img[6, 6], [0, 0, 255])
    assert np.all(img[4:6, 3:6] == 0)
    assert np.all(img[7:, :] == 0)


def test_draw_rectangle_clips():
    img = np.zeros((5, 5), dtype=np.uint8)
    draw_rectangle(img, Rect(-2, -2, 5, 5), 200)
    assert img[2, 0] == 200
    assert img[0, 2] == 200
    assert img[4, 4] == 0


def test_draw_text_marks_pixels():
    img = np.zeros((40, 120, 3), dtype=np.uint8)
    draw_text(img, "id:01", (5, 30), (0, 255, 0))
    marked = np.any(img != 0, axis=2)
    assert marked.any()
    assert np.all(img[marked] == [0, 255, 0])


def test_draw_text_empty_leaves_image():
    img = np.zeros((20, 20), dtype=np.uint8)
    draw_text(img, "", (2, 10), 255)
    assert not img.any()