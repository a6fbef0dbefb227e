"""
Tests for template building, searching and sub-pixel peak location.
"""

import math

import pytest
import numpy as np


# soft-edged disk used for sub-pixel tests
RADIUS = 6.0
EDGE = 1.0
BACKGROUND = 30
AMPLITUDE = 200


def render_disk(width, height, cx, cy, offset=0):
    """Render an anti-aliased bright disk centered on (cx, cy) as RGB."""
    sub = (np.arange(4) + 0.5) / 4
    ys, xs = np.mgrid[0:height, 0:width]
    total = np.zeros((height, width))
    for sy in sub:
        for sx in sub:
            r = np.hypot(xs + sx - cx, ys + sy - cy)
            total += AMPLITUDE / (1 + np.exp((r - RADIUS) / EDGE))
    gray = np.floor(BACKGROUND + offset + total / 16 + 0.5).astype(np.uint8)
    return np.dstack([gray, gray, gray])


def pasted_target(seed=0):
    """A 40x30 random target with a 9x7 sample cut from (12, 9)."""
    rng = np.random.default_rng(seed)
    target = rng.integers(0, 256, size=(30, 40, 3), dtype=np.uint8)
    sample = target[9:16, 12:21].copy()
    return sample, target


class TestTemplateBuilder:
    """Tests for template building and trimming."""

    def test_unmasked_template_is_sample(self):
        """Test that an unmasked opaque sample becomes the template unchanged."""
        from patchtrack.core.buffer import PixelBuffer
        from patchtrack.matching import TemplateMatcher

        sample, _ = pasted_target()
        matcher = TemplateMatcher(sample)
        template = matcher.template
        assert template.image == PixelBuffer.from_rgb(sample)
        assert (template.trim_left, template.trim_top) == (0, 0)
        assert matcher.alphas == (255, 0)

    def test_trim_idempotence(self):
        """Test that a masked template is trimmed and rebuilds identically."""
        from patchtrack.core.shapes import RectMask
        from patchtrack.matching import TemplateMatcher

        rng = np.random.default_rng(1)
        sample = rng.integers(0, 256, size=(16, 20, 3), dtype=np.uint8)
        matcher = TemplateMatcher(sample, mask=RectMask(3, 3, 14, 10))

        first = matcher.template
        assert (first.width, first.height) == (14, 10)
        assert (first.trim_left, first.trim_top) == (3, 3)
        assert not first.transparent.any()
        first_pixels = first.image.data.copy()

        second = matcher.build_template(sample, 255, 0)
        assert (second.trim_left, second.trim_top) == (3, 3)
        assert np.array_equal(second.image.data, first_pixels)

    def test_ellipse_mask_keeps_corners_transparent(self):
        """Test that pixels outside an ellipse mask are excluded."""
        from patchtrack.core.shapes import EllipseMask
        from patchtrack.matching import TemplateMatcher

        sample = np.full((21, 21, 3), 80, dtype=np.uint8)
        matcher = TemplateMatcher(sample, mask=EllipseMask(0, 0, 21, 21))
        template = matcher.template
        assert template.transparent[0, 0]
        assert not template.transparent[template.height // 2, template.width // 2]

    def test_fully_transparent_sample(self):
        """Test that a fully transparent sample gives a 1x1 transparent template."""
        from patchtrack.matching import TemplateMatcher

        sample = np.zeros((6, 5, 4), dtype=np.uint8)
        template = TemplateMatcher(sample).template
        assert (template.width, template.height) == (1, 1)
        assert template.transparent.all()
        assert (template.trim_left, template.trim_top) == (5, 6)

    def test_trim_bounds(self):
        """Test counting transparent edges."""
        from patchtrack.matching import trim_bounds

        transparent = np.ones((5, 6), dtype=bool)
        transparent[1:3, 2:5] = False
        assert trim_bounds(transparent) == (2, 1, 1, 2)

    def test_dimension_mismatch(self):
        """Test that building from a wrong-sized sample raises an error."""
        from patchtrack.core.base import DimensionMismatchError
        from patchtrack.matching import TemplateMatcher

        matcher = TemplateMatcher(np.zeros((7, 9, 3), dtype=np.uint8))
        with pytest.raises(DimensionMismatchError) as info:
            matcher.build_template(np.zeros((7, 8, 3), dtype=np.uint8), 255, 0)
        assert info.value.expected == (9, 7)
        assert info.value.actual == (8, 7)
        assert isinstance(info.value, ValueError)

    def test_zero_alphas_keep_template(self):
        """Test that zero opacities leave the template unchanged."""
        from patchtrack.matching import TemplateMatcher

        sample = np.full((4, 4, 3), 10, dtype=np.uint8)
        matcher = TemplateMatcher(sample)
        before = matcher.template
        after = matcher.build_template(np.full((4, 4, 3), 200, dtype=np.uint8), 0, 0)
        assert after is before

    def test_evolve_blends_sample(self):
        """Test that evolving blends a new sample into the template."""
        from patchtrack.matching import TemplateMatcher

        matcher = TemplateMatcher(np.full((6, 6, 3), 100, dtype=np.uint8))
        template = matcher.evolve(np.full((6, 6, 3), 200, dtype=np.uint8), alpha=128)
        assert np.all(template.image.rgb == 150)
        assert np.all(template.image.alpha == 255)
        assert matcher.alphas == (128, 0)

    def test_working_pixels_round_trip(self):
        """Test saving and restoring the working image."""
        from patchtrack.matching import TemplateMatcher

        matcher = TemplateMatcher(np.full((6, 6, 3), 100, dtype=np.uint8))
        saved = matcher.get_working_pixels()
        matcher.evolve(np.full((6, 6, 3), 200, dtype=np.uint8), alpha=255)
        assert not np.array_equal(matcher.get_working_pixels(), saved)

        assert matcher.set_working_pixels(saved) is True
        assert np.array_equal(matcher.get_working_pixels(), saved)
        assert matcher.set_working_pixels(np.zeros((3, 3, 4), dtype=np.uint8)) is False
        assert matcher.set_working_pixels(None) is False

    def test_set_template_reuses_storage(self):
        """Test that a same-sized template replaces pixels in place."""
        from patchtrack.matching import TemplateMatcher

        matcher = TemplateMatcher(np.full((7, 9, 3), 10, dtype=np.uint8))
        storage = matcher.builder.arena.r
        replacement = np.full((7, 9, 3), 60, dtype=np.uint8)
        template = matcher.set_template(replacement)

        assert np.all(template.image.rgb == 60)
        assert np.shares_memory(storage, matcher.builder.arena.r)
        assert np.all(matcher.builder.arena.r == 60)

    def test_set_template_new_size(self):
        """Test that a differently sized template becomes the new original."""
        from patchtrack.matching import TemplateMatcher

        matcher = TemplateMatcher(np.full((7, 9, 3), 10, dtype=np.uint8))
        template = matcher.set_template(np.full((5, 5, 3), 60, dtype=np.uint8))
        assert (template.width, template.height) == (5, 5)
        assert matcher.builder.original.size == (5, 5)


class TestSimilarityScorer:
    """Tests for template scoring."""

    def test_out_of_bounds_probe(self):
        """Test that a template that does not fit scores nan."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        matcher = TemplateMatcher(sample)
        matcher.scorer.set_target_window(target.astype(np.int64))
        assert math.isnan(matcher.scorer.score(-1, 0))
        assert math.isnan(matcher.scorer.score(0, -1))
        assert math.isnan(matcher.scorer.score(32, 0))
        assert math.isnan(matcher.scorer.score(0, 24))
        assert matcher.scorer.score(31, 23) >= 0
        assert matcher.scorer.score(12, 9) == 0

    def test_grid_matches_single_scores(self):
        """Test that grid scoring agrees with scoring single offsets."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target(seed=4)
        matcher = TemplateMatcher(sample)
        matcher.scorer.set_target_window(target)
        grid = matcher.scorer.score_grid(5, 4)
        assert grid.shape == (4, 5)
        for y in range(4):
            for x in range(5):
                assert grid[y, x] == matcher.scorer.score(x, y)

    def test_mask_exclusion(self):
        """Test that pixels outside the mask do not affect the score."""
        from patchtrack.core.shapes import RectMask
        from patchtrack.matching import TemplateMatcher

        sample = np.full((10, 10, 3), 100, dtype=np.uint8)
        matcher = TemplateMatcher(sample, mask=RectMask(1, 1, 8, 8))
        template = matcher.template
        assert (template.width, template.height) == (8, 8)
        assert (template.trim_left, template.trim_top) == (1, 1)

        rng = np.random.default_rng(5)
        for _ in range(3):
            target = rng.integers(0, 256, size=(10, 10, 3), dtype=np.uint8)
            target[1:9, 1:9] = 100
            matcher.scorer.set_target_window(target)
            assert matcher.scorer.score(1, 1) == 0


class TestPeakLocator:
    """Tests for 3-point peak fitting."""

    def test_symmetric_peak(self):
        """Test a symmetric peak gives zero offset and the closed-form width."""
        from patchtrack.matching import PeakLocator

        fit = PeakLocator().fit([-1, 0, 1], [4.0, 9.0, 4.0])
        assert fit.offset == pytest.approx(0.0, abs=1e-12)
        assert fit.width == pytest.approx(1 / math.log(9 / 4))
        assert fit.height == pytest.approx(9.0)

    def test_gaussian_recovered(self):
        """Test that samples of a Gaussian recover its parameters."""
        from patchtrack.matching import PeakLocator

        xs = [-1.0, 0.0, 1.0]
        ys = [10 * math.exp(-(x - 0.3) ** 2 / 2) for x in xs]
        fit = PeakLocator().fit(xs, ys)
        assert fit.height == pytest.approx(10.0)
        assert fit.offset == pytest.approx(0.3)
        assert fit.width == pytest.approx(2.0)
        assert fit.rms < 1e-9

    def test_parabola_model(self):
        """Test the parabola peak model."""
        from patchtrack.core.config import MatcherConfig
        from patchtrack.matching import PeakLocator

        locator = PeakLocator(MatcherConfig(peak_model="parabola"))
        fit = locator.fit([-1, 0, 1], [8.4, 9.9, 6.4])
        assert fit.height == pytest.approx(10.0)
        assert fit.offset == pytest.approx(-0.2)
        assert fit.width == pytest.approx(4.0)

    def test_warm_start(self):
        """Test the pull/push offset estimate."""
        from patchtrack.matching import warm_start

        offset, width = warm_start([-1, 0, 1], [4.0, 9.0, 6.0])
        assert offset == pytest.approx(0.15)
        assert width == pytest.approx(1.15 ** 2 / math.log(9 / 4))

    def test_polish_converges(self):
        """Test that Newton iterations converge from the warm start."""
        from patchtrack.matching import PeakLocator

        xs = [-1.0, 0.0, 1.0]
        ys = [10 * math.exp(-(x - 0.3) ** 2 / 2) for x in xs]
        fit = PeakLocator().polish_gaussian(xs, ys)
        assert fit is not None
        assert fit.rms < 0.01
        assert fit.offset == pytest.approx(0.3, abs=0.02)

    def test_bad_heights_fail(self):
        """Test that non-positive or missing heights give no fit."""
        from patchtrack.matching import PeakLocator

        locator = PeakLocator()
        assert locator.fit([-1, 0, 1], [float("nan"), 9.0, 4.0]) is None
        assert locator.fit([-1, 0, 1], [-1.0, 9.0, 4.0]) is None

    def test_failed_axis(self):
        """Test that a failed axis gives a zero delta and a nan width."""
        from patchtrack.matching import PeakLocator

        dx, dy, width = PeakLocator().refine_axes(9.0, (float("nan"), 4.0), (4.0, 6.0))
        assert dx == 0.0
        assert dy > 0
        assert math.isnan(width)

    def test_peak_height(self):
        """Test the score to peak height transform."""
        from patchtrack.matching import peak_height

        assert peak_height(10.0, 2.0) == 4.0
        assert math.isinf(peak_height(10.0, 0.0))
        assert math.isnan(peak_height(10.0, float("nan")))


class TestSearchGeometry:
    """Tests for line clipping and candidate generation."""

    def test_horizontal_line(self):
        """Test candidates along a horizontal line."""
        from patchtrack.core.base import SearchRect
        from patchtrack.matching import search_points

        points = search_points(SearchRect(10, 10, 5, 5), 0, 12.5, 0.0)
        assert points == [(0.5, 2.5), (1.5, 2.5), (2.5, 2.5), (3.5, 2.5), (4.5, 2.5)]

    def test_vertical_line(self):
        """Test that a vertical line is handled."""
        from patchtrack.core.base import SearchRect
        from patchtrack.matching import line_segment

        p1, p2 = line_segment(SearchRect(0, 0, 4, 4), 1.5, 0, math.pi / 2)
        assert p1[0] == pytest.approx(1.5)
        assert p2[0] == pytest.approx(1.5)
        assert sorted([p1[1], p2[1]]) == pytest.approx([0.0, 4.0])

    def test_diagonal_dedupes_lattice_points(self):
        """Test that a diagonal through lattice points yields one candidate per cell."""
        from patchtrack.core.base import SearchRect
        from patchtrack.matching import search_points

        points = search_points(SearchRect(0, 0, 3, 3), 0, 0, -math.pi / 4)
        assert len(points) == 3
        flat = [c for point in points for c in point]
        assert flat == pytest.approx([0.5, 0.5, 1.5, 1.5, 2.5, 2.5])

    def test_line_misses(self):
        """Test that a line outside the rectangle gives no candidates."""
        from patchtrack.core.base import SearchRect
        from patchtrack.matching import line_segment, search_points

        rect = SearchRect(0, 0, 10, 10)
        assert line_segment(rect, 0, 50, 0.0) is None
        assert search_points(rect, 0, 50, 0.0) is None


class TestTemplateMatcher:
    """Tests for matching templates in targets."""

    def test_self_match(self):
        """Test that a sample cut from the target is found exactly."""
        from patchtrack.core.buffer import PixelBuffer
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        matcher = TemplateMatcher(sample)
        result = matcher.match_location(target, (5, 5, 25, 20))

        assert result.location == (12.0, 9.0)
        assert result.match_offset == (12, 9)
        assert math.isinf(result.peak_height)
        assert math.isnan(result.peak_width)
        assert result.is_exact and result.is_good()
        assert result.preview == PixelBuffer.from_rgb(sample)
        assert matcher.match_image is result.preview
        assert math.isinf(matcher.width_and_height()[1])

    def test_self_match_with_mask(self):
        """Test that trimming is undone in the reported location."""
        from patchtrack.core.shapes import RectMask
        from patchtrack.matching import TemplateMatcher

        rng = np.random.default_rng(2)
        target = rng.integers(0, 256, size=(20, 20, 3), dtype=np.uint8)
        sample = rng.integers(0, 256, size=(10, 10, 3), dtype=np.uint8)
        sample[1:9, 1:9] = target[7:15, 6:14]
        matcher = TemplateMatcher(sample, mask=RectMask(1, 1, 8, 8))

        result = matcher.match_location(target, (0, 0, 20, 20))
        assert result.location == (5.0, 6.0)
        assert math.isinf(result.peak_height)
        assert result.preview.size == (8, 8)

    def test_degenerate_rect(self):
        """Test that an empty search rectangle gives a no-match result."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        matcher = TemplateMatcher(sample)
        result = matcher.match_location(target, (0, 0, 0, 0))

        assert not result.found
        assert math.isnan(result.peak_height)
        assert math.isnan(result.peak_width)
        assert math.isnan(matcher.peak_width)

    def test_monotonic_degradation(self):
        """Test that the peak height falls as noise is added to the target."""
        from patchtrack.matching import TemplateMatcher

        sigmas = (2, 8, 32)
        heights = {sigma: [] for sigma in sigmas}
        for trial in range(4):
            sample, target = pasted_target(seed=10 + trial)
            matcher = TemplateMatcher(sample)
            rng = np.random.default_rng(100 + trial)
            for sigma in sigmas:
                noise = rng.normal(0, sigma, size=target.shape)
                noisy = np.clip(target + noise, 0, 255).round().astype(np.uint8)
                result = matcher.match_location(noisy, (5, 5, 25, 20))
                assert result.match_offset == (12, 9)
                heights[sigma].append(result.peak_height)

        means = [np.mean(heights[sigma]) for sigma in sigmas]
        assert means[0] > means[1] > means[2] > 0

    def test_subpixel_round_trip(self):
        """Test that a shifted disk is located to a tenth of a pixel."""
        from patchtrack.matching import TemplateMatcher

        sample = render_disk(21, 21, 10.5, 10.5)
        target = render_disk(41, 41, 20.5 + 3.5, 20.5 - 2.25, offset=20)
        matcher = TemplateMatcher(sample)
        result = matcher.match_location(target, (10, 10, 21, 21))

        x, y = result.location
        assert x - 10 == pytest.approx(3.5, abs=0.1)
        assert y - 10 == pytest.approx(-2.25, abs=0.1)
        assert result.peak_height > 5
        assert result.peak_width > 0

    def test_line_subpixel(self):
        """Test sub-pixel refinement along a horizontal search line."""
        from patchtrack.matching import TemplateMatcher

        sample = render_disk(21, 21, 10.5, 10.5)
        target = render_disk(41, 41, 24.0, 18.5, offset=20)
        matcher = TemplateMatcher(sample)
        result = matcher.match_location_along_line(target, (10, 10, 21, 21), 0, 18.5, 0.0)

        x, y = result.location
        assert x == pytest.approx(13.5, abs=0.1)
        assert y == pytest.approx(8.0, abs=1e-9)
        assert result.peak_height > 5

    def test_line_diagonal_exact(self):
        """Test an exact match found along a diagonal line."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        matcher = TemplateMatcher(sample)
        result = matcher.match_location_along_line(
            target, (5, 5, 25, 20), 16.5, 12.5, -math.pi / 4, spread=2,
        )
        assert result.location == (12.0, 9.0)
        assert math.isinf(result.peak_height)

    def test_line_misses_rect(self):
        """Test the sentinel result for a line that misses the rectangle."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        matcher = TemplateMatcher(sample)
        result = matcher.match_location_along_line(target, (5, 5, 25, 20), 1000, 1000, 0.0)

        assert not result.found
        assert math.isnan(result.peak_height)
        assert result.peak_width == -1
        assert matcher.width_and_height()[0] == -1

    def test_line_best_at_endpoint(self):
        """Test that a best candidate at the end of the line is not refined."""
        from patchtrack.matching import TemplateMatcher

        sample = render_disk(21, 21, 10.5, 10.5)
        target = render_disk(61, 41, 18.0, 12.5)
        matcher = TemplateMatcher(sample)
        result = matcher.match_location_along_line(target, (20, 10, 21, 5), 0, 12.5, 0.0)

        assert result.found
        assert math.isfinite(result.peak_height)
        assert math.isnan(result.peak_width)
        assert result.match_offset == (10, 2)
        assert result.location == result.match_offset

    def test_neighbor_outside_window(self):
        """Test that a match on the rectangle edge keeps its integer location."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        brighter = np.clip(target.astype(np.int64) + 3, 0, 255).astype(np.uint8)
        matcher = TemplateMatcher(sample)
        # the rectangle origin anchors the template at the pasted position
        result = matcher.match_location(brighter, (16, 12, 5, 5))

        assert result.match_offset == (12, 9)
        assert result.location == (12.0, 9.0)
        assert math.isfinite(result.peak_height)
        assert math.isnan(result.peak_width)

    def test_configured_threshold(self):
        """Test that results judge quality by the matcher's configured threshold."""
        from patchtrack.core.config import MatcherConfig
        from patchtrack.matching import GOOD_MATCH_THRESHOLD, MatchResult, TemplateMatcher

        sample, target = pasted_target()
        brighter = np.clip(target.astype(np.int64) + 3, 0, 255).astype(np.uint8)
        matcher = TemplateMatcher(sample, config=MatcherConfig(good_match_threshold=1e9))
        result = matcher.match_location(brighter, (5, 5, 25, 20))

        assert result.good_match_threshold == 1e9
        assert math.isfinite(result.peak_height)
        assert not result.is_good()
        assert result.is_good(GOOD_MATCH_THRESHOLD)
        assert MatchResult((0.0, 0.0), 6.0, 1.0).is_good()

    def test_preview_uses_scored_pixels(self):
        """Test that transparent target pixels appear black in the preview."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        rgba = np.dstack([target, np.full(target.shape[:2], 255, dtype=np.uint8)])
        rgba[10, 13, 3] = 0
        matcher = TemplateMatcher(sample)
        result = matcher.match_location(rgba, (5, 5, 25, 20))

        assert result.match_offset == (12, 9)
        preview = result.preview
        assert preview.rgb[1, 1].tolist() == [0, 0, 0]
        assert preview.alpha[1, 1] == 255
        expected = sample.copy()
        expected[1, 1] = 0
        assert np.array_equal(preview.rgb, expected)

    def test_result_to_dict(self):
        """Test converting a result to a dictionary."""
        from patchtrack.matching import TemplateMatcher

        sample, target = pasted_target()
        result = TemplateMatcher(sample).match_location(target, (5, 5, 25, 20))
        data = result.to_dict()
        assert data["location"] == (12.0, 9.0)
        assert data["search_rect"] == (5, 5, 25, 20)
        assert "preview" not in data


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
