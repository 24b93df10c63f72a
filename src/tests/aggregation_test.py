"""Tests for tick to bar aggregation and bar roll-up."""

from unittest.mock import Mock
from uuid import uuid4

import pytest

from dukafeed.core.exceptions import ValidationFailure
from dukafeed.core.models import REALTIME_UUID, Period, StreamSource
from dukafeed.core.streams import stream_from
from dukafeed.data.aggregation import (
    BarTickStreamAggregator,
    TickBarNotifyingAggregator,
    TickToBarList,
    TickToBarStream,
    roll_up_bars,
)
from dukafeed.helpers.time_helper import MS_PER_MINUTE, to_epoch_ms

FIVE_AM = to_epoch_ms("2019-02-02T05:00:00Z")


@pytest.fixture
def bucket():
    return BarTickStreamAggregator(REALTIME_UUID, "EURUSD", to_epoch_ms("2019-02-02T05:16:32Z"), Period.M5)


class TestBarTickStreamAggregator:
    """Test a single OHLC bucket."""

    def test_bucket_bounds_are_rounded(self, bucket):
        """Test the bucket covers the whole period containing the start."""
        assert bucket.start_ms == to_epoch_ms("2019-02-02T05:15:00Z")
        assert bucket.end_ms == to_epoch_ms("2019-02-02T05:19:59.999Z")
        assert bucket.source is StreamSource.LIVE

    def test_ohlc(self, bucket, make_tick):
        """Test open is first, close is last, high/low are extrema."""
        for second, bid in ((0, 100), (10, 120), (20, 90), (30, 110)):
            bucket.add(make_tick(bucket.start_ms + second * 1000, bid=bid))

        bar = bucket.to_bar()
        assert (bar.open, bar.high, bar.low, bar.close) == (100, 120, 90, 110)
        assert bucket.tick_volume == 4
        assert bar.start_ms_utc == bucket.start_ms
        assert bar.period is Period.M5
        assert bar.source is StreamSource.HISTORICAL

    def test_live_ticks_stay_live(self, bucket, make_tick):
        """Test a bucket fed only live ticks is live."""
        bucket.add(make_tick(bucket.start_ms, source=StreamSource.LIVE))
        assert bucket.to_bar().source is StreamSource.LIVE

    def test_accepts_last_millisecond(self, bucket, make_tick):
        """Test the final millisecond belongs to the bucket."""
        bucket.add(make_tick(bucket.end_ms))
        assert bucket.tick_volume == 1

    def test_rejects_tick_past_end(self, bucket, make_tick):
        """Test a tick after the bucket is rejected."""
        with pytest.raises(ValidationFailure, match="is past end of bar"):
            bucket.add(make_tick("2019-02-02T05:20:00Z"))

    def test_rejects_tick_before_start(self, bucket, make_tick):
        """Test a tick before the bucket is rejected."""
        with pytest.raises(ValidationFailure, match="is before start of bar"):
            bucket.add(make_tick("2019-02-02T05:14:59.999Z"))

    def test_rejects_other_symbol(self, bucket, make_tick):
        """Test a tick for another symbol is rejected."""
        with pytest.raises(ValidationFailure, match="is not matching bar symbol"):
            bucket.add(make_tick("2019-02-02T05:16:00Z", symbol="AUDUSD"))

    def test_rejects_other_stream(self, bucket, make_tick):
        """Test a tick from another stream is rejected."""
        with pytest.raises(ValidationFailure, match="is not matching bar stream"):
            bucket.add(make_tick("2019-02-02T05:16:00Z", stream_id=uuid4()))


class TestTickBarNotifyingAggregator:
    """Test keyed aggregation with notification."""

    def test_notifies_when_bucket_passes(self, make_tick):
        """Test each finished bucket is sent, and the last on load end."""
        notifier = Mock()
        aggregator = TickBarNotifyingAggregator(notifier, Period.M5)
        aggregator.load_start()
        for minute, bid in ((1, 100), (3, 105), (6, 110), (12, 95)):
            aggregator.add(make_tick(FIVE_AM + minute * MS_PER_MINUTE, bid=bid))

        sent = [c.args[0] for c in notifier.notify.call_args_list]
        assert [bar.start_ms_utc for bar in sent] == [FIVE_AM, FIVE_AM + 5 * MS_PER_MINUTE]
        assert (sent[0].open, sent[0].close) == (100, 105)
        notifier.flush.assert_not_called()

        aggregator.load_end()
        sent = [c.args[0] for c in notifier.notify.call_args_list]
        assert sent[-1].start_ms_utc == FIVE_AM + 10 * MS_PER_MINUTE
        assert sent[-1].close == 95
        notifier.flush.assert_called_once_with()

    def test_keys_are_independent(self, make_tick):
        """Test symbols are aggregated separately."""
        notifier = Mock()
        aggregator = TickBarNotifyingAggregator(notifier, Period.M5)
        aggregator.add(make_tick(FIVE_AM, bid=100))
        aggregator.add(make_tick(FIVE_AM, bid=70_000, symbol="AUDUSD"))
        aggregator.add(make_tick(FIVE_AM + MS_PER_MINUTE, bid=101))
        aggregator.load_end()

        sent = {c.args[0].symbol: c.args[0] for c in notifier.notify.call_args_list}
        assert set(sent) == {"EURUSD", "AUDUSD"}
        assert sent["EURUSD"].close == 101
        assert sent["AUDUSD"].open == 70_000

    def test_out_of_order_tick_is_rejected(self, make_tick):
        """Test a tick earlier than the open bucket raises."""
        aggregator = TickBarNotifyingAggregator(Mock(), Period.M5)
        aggregator.add(make_tick(FIVE_AM + 6 * MS_PER_MINUTE))
        with pytest.raises(ValidationFailure, match="is before start of bar"):
            aggregator.add(make_tick(FIVE_AM + 3 * MS_PER_MINUTE))


class TestTickToBar:
    """Test draining tick streams into bars."""

    def _hour_of_ticks(self, make_tick):
        return [make_tick(FIVE_AM + minute * MS_PER_MINUTE, bid=100 + minute) for minute in range(60)]

    def test_list(self, make_tick):
        """Test an hour of ticks becomes twelve five minute bars."""
        seen = []
        converter = TickToBarList(Period.M5, stream_from(self._hour_of_ticks(make_tick)), seen.append)
        bars = converter.convert()
        assert len(bars) == 12
        assert seen == bars
        assert (bars[0].open, bars[0].high, bars[0].low, bars[0].close) == (100, 104, 100, 104)

    def test_stream_is_lazy(self, make_tick):
        """Test ticks are not read until the bar stream is."""
        ticks = stream_from(self._hour_of_ticks(make_tick))
        bars = TickToBarStream(Period.H1, ticks)
        assert ticks.has_next()
        assert [bar.start_ms_utc for bar in bars] == [FIVE_AM]
        assert not ticks.has_next()

    def test_stream_close_closes_ticks(self, make_tick):
        """Test closing the bar stream closes the tick stream."""
        on_close = Mock()
        with TickToBarStream(Period.M5, stream_from([], on_close=on_close)) as bars:
            assert not bars.has_next()
        on_close.assert_called_once_with()


def five_minute_run(make_bar, count, start_ms=FIVE_AM):
    """*count* M5 bars from *start_ms*, newest first, prices keyed on the minute offset."""
    bars = []
    for index in range(count):
        minute = index * 5
        bars.append(make_bar(
            start_ms + minute * MS_PER_MINUTE,
            open=1000 + minute,
            high=2000 + minute,
            low=500 + minute,
            close=1500 + minute,
        ))
    return list(reversed(bars))


class TestRollUp:
    """Test merging small bars into larger ones."""

    def test_empty(self):
        """Test no bars in, no bars out."""
        assert roll_up_bars([], Period.H1) == []

    def test_single_bar(self, make_bar):
        """Test one bar becomes one bar of the target period."""
        bars = roll_up_bars([make_bar("2019-02-02T05:15:00Z")], Period.H1)
        assert len(bars) == 1
        assert bars[0].period is Period.H1
        assert bars[0].start_ms_utc == FIVE_AM
        assert (bars[0].open, bars[0].close) == (116_000, 116_020)

    def test_twelve_into_one_hour(self, make_bar):
        """Test an hour of five minute bars rolls up into one bar."""
        bars = roll_up_bars(five_minute_run(make_bar, 12), Period.H1)
        assert len(bars) == 1
        bar = bars[0]
        assert bar.start_ms_utc == FIVE_AM
        assert (bar.open, bar.high, bar.low, bar.close) == (1000, 2055, 500, 1555)
        assert bar.stream_id == REALTIME_UUID

    def test_eighteen_split_at_hour(self, make_bar):
        """Test a run crossing the hour yields two bars, newest first."""
        bars = roll_up_bars(five_minute_run(make_bar, 18), Period.H1)
        assert [bar.start_ms_utc for bar in bars] == [FIVE_AM + 60 * MS_PER_MINUTE, FIVE_AM]
        assert (bars[0].open, bars[0].close) == (1060, 1585)
        assert (bars[1].open, bars[1].close) == (1000, 1555)

    def test_source_contamination(self, make_bar):
        """Test one historical bar makes the rolled bar historical."""
        bars = [
            make_bar("2019-02-02T05:05:00Z", source=StreamSource.LIVE),
            make_bar("2019-02-02T05:00:00Z", source=StreamSource.HISTORICAL),
        ]
        assert roll_up_bars(bars, Period.H1)[0].source is StreamSource.HISTORICAL

    def test_different_symbols(self, make_bar):
        """Test mixed symbols are rejected."""
        bars = [make_bar("2019-02-02T05:05:00Z"), make_bar("2019-02-02T05:00:00Z", symbol="AUDUSD")]
        with pytest.raises(ValidationFailure, match="different symbols.  First was EURUSD"):
            roll_up_bars(bars, Period.H1)

    def test_larger_period(self, make_bar):
        """Test bars larger than the target are rejected."""
        bars = [make_bar("2019-02-02T00:00:00Z", period=Period.D1)]
        with pytest.raises(ValidationFailure, match="larger periods D1 that the target H1"):
            roll_up_bars(bars, Period.H1)

    def test_same_period(self, make_bar):
        """Test bars already at the target period are rejected."""
        with pytest.raises(ValidationFailure, match="larger periods M5"):
            roll_up_bars([make_bar("2019-02-02T05:00:00Z")], Period.M5)

    def test_mixed_periods(self, make_bar):
        """Test bars of different periods are rejected."""
        bars = [make_bar("2019-02-02T05:10:00Z"), make_bar("2019-02-02T05:00:00Z", period=Period.M10)]
        with pytest.raises(ValidationFailure, match="mixed periods.  First was M5"):
            roll_up_bars(bars, Period.H1)

    def test_ascending_rejected(self, make_bar):
        """Test input must be newest first."""
        bars = list(reversed(five_minute_run(make_bar, 3)))
        with pytest.raises(ValidationFailure, match="sorted in descending time"):
            roll_up_bars(bars, Period.H1)
