"""Test deviation scoring."""

import pytest

from pipelens.monitoring.deviation import confidence, deviation


@pytest.mark.unit
class TestDeviation:
    """Test the 20%-of-baseline deviation model."""

    def test_documented_example(self):
        assert deviation(30000, 10000) == pytest.approx(10.0)

    def test_one_unit_is_twenty_percent(self):
        assert deviation(120, 100) == pytest.approx(1.0)
        assert deviation(100, 100) == 0.0

    @pytest.mark.parametrize("baseline,observed", [(100, 40), (10000, 2500), (3.5, 1.0), (50, 0)])
    def test_symmetric_around_baseline(self, baseline, observed):
        mirrored = 2 * baseline - observed
        assert deviation(observed, baseline) == pytest.approx(deviation(mirrored, baseline))

    @pytest.mark.parametrize("observed", [0, 1, -5, 1e9])
    def test_zero_baseline_guard(self, observed):
        assert deviation(observed, 0) == 0.0


@pytest.mark.unit
class TestConfidence:
    """Test confidence clamping."""

    def test_ratio_below_ceiling(self):
        assert confidence(1.5, 3.0) == pytest.approx(0.5)

    def test_capped_at_one(self):
        assert confidence(10.0, 3.0) == 1.0

    def test_never_negative(self):
        assert confidence(-1.0, 3.0) == 0.0
