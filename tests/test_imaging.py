import cv2
import numpy as np
import pytest

from hausfinder import config, imaging
from hausfinder.grids import ColorImage, EdgeMask


def _rectangle_image(width=60, height=40):
    img = np.zeros((height, width, 3), np.uint8)
    cv2.rectangle(img, (15, 10), (45, 30), (255, 255, 255), -1)
    return img


def test_load_color_image(tmp_path):
    path = tmp_path / "rect.png"
    cv2.imwrite(str(path), _rectangle_image())
    image = imaging.load_color_image(path)
    assert isinstance(image, ColorImage)
    assert (image.width, image.height) == (60, 40)


def test_load_missing_image_raises(tmp_path):
    with pytest.raises(imaging.ImageLoadError):
        imaging.load_color_image(tmp_path / "missing.png")


def test_load_corrupt_image_raises(tmp_path):
    path = tmp_path / "corrupt.png"
    path.write_bytes(b"not an image")
    with pytest.raises(imaging.ImageLoadError):
        imaging.load_color_image(path)


def test_edges_follow_rectangle_border():
    mask = imaging.edge_mask_from_image(ColorImage(_rectangle_image()))
    xs, ys = mask.edge_coords
    assert mask.edge_count > 0
    # every edge pixel sits within two pixels of the rectangle outline
    near_vertical = (np.abs(xs - 15) <= 2) | (np.abs(xs - 45) <= 2)
    near_horizontal = (np.abs(ys - 10) <= 2) | (np.abs(ys - 30) <= 2)
    assert np.all(near_vertical | near_horizontal)
    assert not mask.at(30, 20)


def test_blank_image_has_no_edges():
    image = ColorImage(np.full((20, 20, 3), 128, np.uint8))
    assert imaging.edge_mask_from_image(image).edge_count == 0


def test_l1_distance_field():
    mask = EdgeMask.from_points(9, 9, [(2, 2)])
    field = imaging.build_distance_field(mask, "l1")
    assert field.shape == mask.shape
    assert field.at(2, 2) == 0
    assert field.at(5, 6) == pytest.approx(7)
    assert field.at(8, 2) == pytest.approx(6)


def test_l2_distance_field():
    mask = EdgeMask.from_points(9, 9, [(2, 2)])
    field = imaging.build_distance_field(mask, "l2")
    assert field.at(5, 6) == pytest.approx(5.0, abs=1e-3)


def test_empty_mask_distance_field_is_sentinel():
    field = imaging.build_distance_field(EdgeMask.blank(4, 3))
    assert np.all(field.values == config.MAX_HAUSDORFF_DISTANCE)


def test_unknown_metric_is_rejected():
    with pytest.raises(ValueError):
        imaging.build_distance_field(EdgeMask.blank(4, 3), "chebyshev")


def test_identity_warp_keeps_mask():
    mask = EdgeMask.from_points(11, 11, [(8, 5), (2, 3)])
    warped = imaging.warp_edge_mask(mask, 0, 1.0)
    assert warped is not mask
    np.testing.assert_array_equal(warped.cells, mask.cells)


def test_quarter_turn_is_counter_clockwise_about_center():
    mask = EdgeMask.from_points(11, 11, [(8, 5)])
    warped = imaging.warp_edge_mask(mask, 90, 1.0)
    xs, ys = warped.edge_coords
    assert list(zip(xs.tolist(), ys.tolist())) == [(5, 2)]


def test_warp_fills_introduced_pixels():
    full = EdgeMask(np.ones((20, 20), dtype=bool))
    shrunk = imaging.warp_edge_mask(full, 0, 0.5)
    assert not shrunk.at(0, 0)
    assert shrunk.at(10, 10)

    blank = EdgeMask.blank(20, 20)
    turned = imaging.warp_edge_mask(blank, 45, 1.0, fill_value=True)
    assert turned.at(0, 0)
    assert not turned.at(10, 10)


def test_warp_rejects_non_positive_scale():
    with pytest.raises(ValueError):
        imaging.warp_edge_mask(EdgeMask.blank(4, 4), 0, 0)
