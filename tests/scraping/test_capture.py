"""Tests for frame crop geometry."""

import pytest

from radarcache.scraping.context import Clip
from radarcache.scraping.steps.capture import calculate_crop, clamp_to_viewport

BOUNDS = Clip(x=100, y=50, width=800, height=600)


class TestCalculateCrop:
    """Tests for applying the configured crop to the map container."""

    def test_no_crop(self):
        """Zero offsets return the container bounds."""
        assert calculate_crop(BOUNDS) == BOUNDS

    def test_offsets(self):
        """Offsets move the origin and shrink the area."""
        clip = calculate_crop(BOUNDS, x=10, y=20, right_offset=30)
        assert clip == Clip(x=110, y=70, width=760, height=580)

    def test_explicit_height(self):
        """A configured height is used when it fits."""
        assert calculate_crop(BOUNDS, y=20, height=300).height == 300

    def test_height_clamped_to_container(self):
        """The crop never extends below the container."""
        assert calculate_crop(BOUNDS, y=20, height=1000).height == 580

    def test_empty_crop_rejected(self):
        """A crop that leaves no area is an error."""
        with pytest.raises(ValueError):
            calculate_crop(BOUNDS, x=500, right_offset=300)


class TestClampToViewport:
    """Tests for fitting a clip inside the viewport."""

    def test_inside(self):
        """A clip within the viewport is unchanged."""
        assert clamp_to_viewport(BOUNDS, 1920, 1080) == BOUNDS

    def test_negative_origin(self):
        """Negative origins are moved to zero and the size reduced."""
        assert clamp_to_viewport(Clip(-10, -5, 100, 100), 1920, 1080) == Clip(0, 0, 90, 95)

    def test_overflow(self):
        """Clips past the right and bottom edges are trimmed."""
        assert clamp_to_viewport(Clip(-10, 5, 100, 100), 80, 90) == Clip(0, 5, 80, 85)

    def test_as_dict(self):
        """Clips convert to the screenshot clip mapping."""
        assert Clip(1, 2, 3, 4).as_dict() == {"x": 1, "y": 2, "width": 3, "height": 4}
