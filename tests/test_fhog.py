import numpy as np
import pytest

from embedmot.fhog import (
    NUM_SECTOR,
    FeatureMap,
    get_feature_maps,
    normalize_and_truncate,
    pca_feature_maps,
)


def _ramp(height, width, step, reverse=False):
    xs = np.arange(width, dtype=np.float32) * step
    if reverse:
        xs = xs[::-1].copy()
    plane = np.tile(xs, (height, 1))
    return np.repeat(plane[:, :, None], 3, axis=2).astype(np.uint8)


def _random_image(height, width, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def test_feature_map_properties():
    fmap = FeatureMap(np.zeros((2, 3, 5)))
    assert (fmap.size_y, fmap.size_x, fmap.num_features) == (2, 3, 5)
    assert fmap.data.dtype == np.float32


def test_feature_map_rejects_flat_data():
    with pytest.raises(ValueError):
        FeatureMap(np.zeros((4, 4)))


def test_get_feature_maps_shape():
    fmap = get_feature_maps(_random_image(20, 30), 4)
    assert fmap.data.shape == (20 // 4, 30 // 4, 3 * NUM_SECTOR)


def test_get_feature_maps_rejects_bad_cell_size():
    with pytest.raises(ValueError):
        get_feature_maps(_random_image(16, 16), 0)


def test_uniform_image_has_no_features():
    image = np.full((16, 16, 3), 77, dtype=np.uint8)
    fmap = get_feature_maps(image, 4)
    np.testing.assert_array_equal(
        fmap.data, np.zeros((4, 4, 3 * NUM_SECTOR), dtype=np.float32)
    )


def test_horizontal_ramp_uses_first_sector_only():
    fmap = get_feature_maps(_ramp(16, 16, 10), 4)
    others = np.delete(fmap.data, [0, NUM_SECTOR], axis=2)
    assert np.all(others == 0)
    assert fmap.data[..., 0].sum() > 0
    np.testing.assert_allclose(fmap.data[..., 0], fmap.data[..., NUM_SECTOR])


def test_reversed_ramp_uses_opposite_sensitive_bin():
    forward = get_feature_maps(_ramp(16, 16, 10), 4)
    backward = get_feature_maps(_ramp(16, 16, 10, reverse=True), 4)
    assert np.all(backward.data[..., NUM_SECTOR] == 0)
    assert backward.data[..., 0].sum() > 0
    np.testing.assert_allclose(backward.data[..., 2 * NUM_SECTOR], backward.data[..., 0])
    # Same magnitude pattern, mirrored left to right.
    np.testing.assert_allclose(
        backward.data[..., 0], forward.data[:, ::-1, 0], rtol=1e-5, atol=1e-4
    )


def test_insensitive_bins_sum_sensitive_pairs():
    fmap = get_feature_maps(_random_image(24, 32, seed=3), 4)
    combined = fmap.data[..., NUM_SECTOR:2 * NUM_SECTOR] + fmap.data[..., 2 * NUM_SECTOR:]
    np.testing.assert_allclose(fmap.data[..., :NUM_SECTOR], combined, rtol=1e-4, atol=1e-3)


def test_grey_image_matches_three_equal_channels():
    rng = np.random.default_rng(7)
    grey = rng.integers(0, 256, size=(20, 20), dtype=np.uint8)
    colour = np.repeat(grey[:, :, None], 3, axis=2)
    np.testing.assert_array_equal(
        get_feature_maps(grey, 4).data, get_feature_maps(colour, 4).data
    )


def test_feature_values_are_non_negative():
    fmap = get_feature_maps(_random_image(32, 32, seed=5), 4)
    assert float(fmap.data.min()) >= 0.0
    assert float(fmap.data.max()) > 0.0


def test_normalize_shape_and_bound():
    fmap = get_feature_maps(_random_image(32, 40, seed=1), 4)
    out = normalize_and_truncate(fmap, 0.2)
    assert out.data.shape == (fmap.size_y - 2, fmap.size_x - 2, 12 * NUM_SECTOR)
    assert np.all(out.data <= np.float32(0.2))
    assert np.all(out.data >= 0)


def test_normalize_worked_example():
    data = np.zeros((3, 3, 3 * NUM_SECTOR), dtype=np.float32)
    data[..., 0] = 1.0
    out = normalize_and_truncate(FeatureMap(data), 1.0)
    cell = out.data[0, 0]
    for index in (0, NUM_SECTOR, 2 * NUM_SECTOR, 3 * NUM_SECTOR):
        assert cell[index] == pytest.approx(0.5, rel=1e-5)
    assert np.count_nonzero(cell) == 4


def test_normalize_truncates_at_alfa():
    data = np.zeros((3, 3, 3 * NUM_SECTOR), dtype=np.float32)
    data[..., 0] = 1.0
    out = normalize_and_truncate(FeatureMap(data), 0.2)
    assert out.data[0, 0, 0] == pytest.approx(0.2)
    assert out.data.max() == pytest.approx(0.2)


def test_normalize_zero_map_stays_zero():
    out = normalize_and_truncate(FeatureMap(np.zeros((4, 5, 3 * NUM_SECTOR))))
    assert out.data.shape == (2, 3, 12 * NUM_SECTOR)
    assert np.all(out.data == 0)


def test_normalize_rejects_wrong_feature_count():
    with pytest.raises(ValueError):
        normalize_and_truncate(FeatureMap(np.zeros((4, 4, 10))), 0.2)


def test_normalize_rejects_tiny_map():
    with pytest.raises(ValueError):
        normalize_and_truncate(FeatureMap(np.zeros((1, 4, 3 * NUM_SECTOR))), 0.2)


def test_pca_of_ones():
    out = pca_feature_maps(FeatureMap(np.ones((2, 3, 12 * NUM_SECTOR))))
    assert out.data.shape == (2, 3, 3 * NUM_SECTOR + 4)
    np.testing.assert_allclose(out.data[..., :3 * NUM_SECTOR], 2.0, rtol=1e-6)
    energy = out.data[..., 3 * NUM_SECTOR:]
    assert np.all(energy > 0)
    np.testing.assert_allclose(energy, energy[0, 0, 0], rtol=1e-6)


def test_pca_insensitive_part_only():
    data = np.zeros((1, 1, 12 * NUM_SECTOR), dtype=np.float32)
    data[..., :4 * NUM_SECTOR] = 1.0
    out = pca_feature_maps(FeatureMap(data)).data[0, 0]
    assert np.all(out[:2 * NUM_SECTOR] == 0)
    assert np.all(out[3 * NUM_SECTOR:] == 0)
    np.testing.assert_allclose(out[2 * NUM_SECTOR:3 * NUM_SECTOR], 2.0, rtol=1e-6)


def test_pca_is_linear():
    rng = np.random.default_rng(11)
    data = rng.random((3, 4, 12 * NUM_SECTOR), dtype=np.float32)
    single = pca_feature_maps(FeatureMap(data)).data
    double = pca_feature_maps(FeatureMap(data * 2)).data
    np.testing.assert_allclose(double, single * 2, rtol=1e-5)


def test_pca_rejects_wrong_feature_count():
    with pytest.raises(ValueError):
        pca_feature_maps(FeatureMap(np.zeros((2, 2, 3 * NUM_SECTOR))))


def test_full_pipeline_shape_and_finite():
    fmap = get_feature_maps(_random_image(40, 48, seed=9), 4)
    reduced = pca_feature_maps(normalize_and_truncate(fmap, 0.2))
    assert reduced.data.shape == (40 // 4 - 2, 48 // 4 - 2, 3 * NUM_SECTOR + 4)
    assert np.all(np.isfinite(reduced.data))
    assert reduced.data.max() > 0