"""Tests for condition comparison semantics."""

import pytest

from core.evaluation import compare, point_value, series_values
from core.models.strategy import Operator


class TestCompare:
    """Tests for compare()."""

    @pytest.mark.parametrize(
        "operator,current,target,expected",
        [
            (Operator.GREATER_THAN, 11, 10, True),
            (Operator.GREATER_THAN, 10, 10, False),
            (Operator.LESS_THAN, 9, 10, True),
            (Operator.LESS_THAN, 10, 10, False),
            (Operator.GREATER_THAN_OR_EQUAL, 10, 10, True),
            (Operator.LESS_THAN_OR_EQUAL, 10, 10, True),
            (Operator.LESS_THAN_OR_EQUAL, 10.1, 10, False),
        ],
    )
    def test_direct_comparisons(self, operator, current, target, expected):
        """Test direct comparison operators."""
        assert compare(operator, current, target) is expected

    def test_equals_within_epsilon(self):
        """Test EQUALS within the tolerance."""
        assert compare(Operator.EQUALS, 10.00005, 10.0) is True

    def test_equals_outside_epsilon(self):
        """Test EQUALS outside the tolerance."""
        assert compare(Operator.EQUALS, 10.001, 10.0) is False

    def test_not_equals(self):
        """Test NOT_EQUALS around the tolerance."""
        assert compare(Operator.NOT_EQUALS, 10.001, 10.0) is True
        assert compare(Operator.NOT_EQUALS, 10.00005, 10.0) is False

    def test_crosses_above(self):
        """Test crossing above the target."""
        assert compare(Operator.CROSSES_ABOVE, 11, 10, previous=9) is True

    def test_crosses_above_from_equal(self):
        """Test crossing above from exactly the target."""
        assert compare(Operator.CROSSES_ABOVE, 11, 10, previous=10) is True

    def test_crosses_above_already_above(self):
        """Test no cross when already above the target."""
        assert compare(Operator.CROSSES_ABOVE, 11, 10, previous=10.5) is False

    def test_crosses_below(self):
        """Test crossing below the target."""
        assert compare(Operator.CROSSES_BELOW, 9, 10, previous=11) is True

    def test_crosses_below_already_below(self):
        """Test no cross when already below the target."""
        assert compare(Operator.CROSSES_BELOW, 9, 10, previous=9.5) is False

    def test_crossover_without_previous_is_false(self):
        """Test crossovers are false without a previous value."""
        assert compare(Operator.CROSSES_ABOVE, 11, 10) is False
        assert compare(Operator.CROSSES_BELOW, 9, 10) is False


class TestSeriesValues:
    """Tests for extracting current/previous values."""

    def test_latest_first(self):
        """Test the latest point is the current value."""
        series = {
            "2024-01-03": {"SMA": "150.0"},
            "2024-01-05": {"SMA": "155.0"},
            "2024-01-04": {"SMA": "152.5"},
        }
        assert series_values(series) == (155.0, 152.5)

    def test_single_point_has_no_previous(self):
        """Test a single point has no previous value."""
        assert series_values({"2024-01-05": {"SMA": "155"}}) == (155.0, None)

    def test_empty_series(self):
        """Test an empty or missing series."""
        assert series_values({}) == (None, None)
        assert series_values(None) == (None, None)

    def test_data_key_selects_field(self):
        """Test data_key selecting one field of each point."""
        series = {
            "2024-01-05": {"MACD": "1.5", "MACD_Signal": "1.2", "MACD_Hist": "0.3"},
            "2024-01-04": {"MACD": "1.1", "MACD_Signal": "1.3", "MACD_Hist": "-0.2"},
        }
        assert series_values(series, "MACD_Signal") == (1.2, 1.3)

    def test_intraday_timestamps(self):
        """Test ordering of intraday timestamps."""
        series = {
            "2024-01-05 15:55": {"RSI": "41.0"},
            "2024-01-05 16:00": {"RSI": "42.0"},
        }
        assert series_values(series) == (42.0, 41.0)


class TestPointValue:
    """Tests for point_value()."""

    def test_first_numeric_field(self):
        """Test falling back to the first numeric field."""
        assert point_value({"label": "x", "SMA": "12.5"}) == 12.5

    def test_missing_data_key(self):
        """Test a missing data_key field."""
        assert point_value({"SMA": "12.5"}, "EMA") is None

    def test_nan_rejected(self):
        """Test NaN values are ignored."""
        assert point_value({"SMA": "nan"}) is None

    def test_scalar_point(self):
        """Test a scalar data point."""
        assert point_value("3.5") == 3.5
