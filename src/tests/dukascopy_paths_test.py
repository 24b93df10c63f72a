"""Tests for Dukascopy archive path generation."""

import pytest

from dukafeed.core.exceptions import InvalidRangeError
from dukafeed.exchanges.dukascopy_paths import DukascopyPathGenerator, parse_path
from dukafeed.helpers.time_helper import to_epoch_ms


@pytest.fixture
def generator():
    return DukascopyPathGenerator()


class TestGeneratePaths:
    """Test hour file address generation."""

    def test_one_day(self, generator):
        """Test a whole day is 24 hour files with zero-based months."""
        paths = generator.generate_paths("EURUSD", "2018-01-01T00:00:00Z", "2018-01-01T23:59:59Z")
        assert len(paths) == 24
        assert paths[0] == "EURUSD/2018/00/01/00h_ticks.bi5"
        assert paths[-1] == "EURUSD/2018/00/01/23h_ticks.bi5"

    def test_two_days(self, generator):
        """Test two whole days."""
        paths = generator.generate_paths("EURUSD", "2018-01-01T00:00:00Z", "2018-01-02T23:59:59Z")
        assert len(paths) == 48

    def test_whole_year(self, generator):
        """Test a year ends in month 11."""
        paths = generator.generate_paths("EURUSD", "2018-01-01T00:00:00Z", "2018-12-31T23:59:59Z")
        assert len(paths) == 8760
        assert paths[-1] == "EURUSD/2018/11/31/23h_ticks.bi5"

    def test_multi_year_with_leap_year(self, generator):
        """Test four years including 2020."""
        paths = generator.generate_paths("EURUSD", "2018-01-01T00:00:00Z", "2021-12-31T23:59:59Z")
        assert len(paths) == 35064
        assert "EURUSD/2020/01/29/12h_ticks.bi5" in paths

    def test_partial_hour(self, generator):
        """Test a one second window still maps to its hour."""
        paths = generator.generate_paths("EURUSD", "2018-01-01T00:00:00Z", "2018-01-01T00:00:01Z")
        assert paths == ["EURUSD/2018/00/01/00h_ticks.bi5"]

    def test_hour_overlap_into_next_day(self, generator):
        """Test a window ending in the first hour of the next day."""
        paths = generator.generate_paths("EURUSD", "2018-01-01T00:00:00Z", "2018-01-02T00:59:59Z")
        assert len(paths) == 25
        assert paths[-1] == "EURUSD/2018/00/02/00h_ticks.bi5"

    def test_ascending_without_duplicates(self, generator):
        """Test paths are ordered and unique across a month boundary."""
        paths = generator.generate_paths("EURUSD", "2018-01-31T20:30:00Z", "2018-02-01T03:10:00Z")
        assert len(paths) == len(set(paths)) == 8
        assert paths[3] == "EURUSD/2018/00/31/23h_ticks.bi5"
        assert paths[4] == "EURUSD/2018/01/01/00h_ticks.bi5"

    def test_equal_start_and_end_rejected(self, generator):
        """Test an empty window fails fast."""
        with pytest.raises(InvalidRangeError, match="must be after"):
            generator.generate_paths("EURUSD", "2018-01-01T00:00:00Z", "2018-01-01T00:00:00Z")

    def test_reversed_rejected(self, generator):
        """Test a reversed window fails fast."""
        with pytest.raises(InvalidRangeError, match="must be after"):
            generator.generate_paths("EURUSD", "2018-01-02T00:00:00Z", "2018-01-01T00:00:00Z")


class TestGroupedByDay:
    """Test per-day grouping."""

    def test_year_grouped(self, generator):
        """Test a year groups into 365 days of 24 files."""
        groups = generator.generate_paths_grouped_by_day("EURUSD", "2018-01-01T00:00:00Z", "2018-12-31T23:59:59Z")
        assert len(groups) == 365
        assert all(len(day) == 24 for day in groups)

    def test_boundary_days_trimmed(self, generator):
        """Test partial first and last days keep only requested hours."""
        groups = generator.generate_paths_grouped_by_day("EURUSD", "2018-01-01T05:30:00Z", "2018-01-02T02:10:00Z")
        assert [len(day) for day in groups] == [19, 3]
        assert groups[0][0] == "EURUSD/2018/00/01/05h_ticks.bi5"
        assert groups[1][-1] == "EURUSD/2018/00/02/02h_ticks.bi5"


class TestParsePath:
    """Test path parsing."""

    def test_parse(self):
        """Test symbol and hour start come back from a path."""
        assert parse_path("EURUSD/2018/06/05/05h_ticks.bi5") == ("EURUSD", to_epoch_ms("2018-07-05T05:00:00Z"))

    def test_parse_rejects_other_files(self):
        """Test a non tick path is rejected."""
        with pytest.raises(ValueError, match="Not a Dukascopy tick path"):
            parse_path("bars/M5/EURUSD/2018-07-05.json")
