import numpy as np
import pandas as pd
import pytest

from flux_intervals.aggregate import Bucket, aggregate, annual_labels, bucket_keys, cumulative
from flux_intervals.daily import decimal_year
from flux_intervals.errors import AssemblyError


def _days(start, end):
    dates = pd.date_range(start, end, freq="D")
    return dates, decimal_year(dates)


def test_daily_view_is_identity():
    dates, dec = _days("2001-01-01", "2001-01-05")
    values = np.arange(10.0).reshape(5, 2)
    agg = aggregate(values, dates, dec, Bucket.DAILY)
    np.testing.assert_array_equal(agg.values, values)
    assert list(agg.n_days) == [1] * 5


def test_monthly_means_keep_partial_months():
    dates, dec = _days("2001-01-15", "2001-03-10")
    values = np.column_stack([np.ones(len(dates)), np.arange(len(dates), dtype=float)])
    agg = aggregate(values, dates, dec, "monthly")

    assert [str(k) for k in agg.keys] == ["2001-01", "2001-02", "2001-03"]
    assert list(agg.n_days) == [17, 28, 10]
    # constant daily rate stays the same rate after aggregation
    np.testing.assert_allclose(agg.values[:, 0], 1.0)
    # second column: mean of consecutive day indices
    np.testing.assert_allclose(agg.values[:, 1], [8.0, 30.5, 49.5])
    assert agg.dec_year[0] == pytest.approx(dec[:17].mean())


def test_annual_buckets_calendar_and_water_year():
    dates, dec = _days("2000-09-25", "2001-01-04")
    values = np.ones((len(dates), 3))

    cal = aggregate(values, dates, dec, Bucket.ANNUAL)
    assert list(cal.keys) == [2000, 2001]
    assert list(cal.n_days) == [98, 4]

    wy = aggregate(values, dates, dec, Bucket.ANNUAL, year_start_month=10)
    assert list(wy.keys) == [2000, 2001]
    assert list(wy.n_days) == [6, 96]


def test_annual_labels_name_water_year_by_its_end():
    dates = pd.DatetimeIndex(["2000-09-30", "2000-10-01", "2001-09-30"])
    assert list(annual_labels(dates, 10)) == [2000, 2001, 2001]
    assert list(annual_labels(dates, 1)) == [2000, 2000, 2001]


def test_cumulative_is_per_column_running_total():
    values = np.array([[1.0, 10.0], [2.0, 0.0], [3.0, 5.0]])
    np.testing.assert_array_equal(cumulative(values), [[1, 10], [3, 10], [6, 15]])

    dates, dec = _days("2001-01-01", "2001-01-03")
    agg = aggregate(values, dates, dec, Bucket.CUMULATIVE)
    assert list(agg.n_days) == [1, 2, 3]
    np.testing.assert_array_equal(agg.values[-1], [6, 15])


def test_unordered_dates_are_rejected():
    dates = pd.DatetimeIndex(["2001-01-31", "2001-02-01", "2001-01-30"])
    with pytest.raises(AssemblyError):
        aggregate(np.ones((3, 2)), dates, decimal_year(dates), Bucket.MONTHLY)


def test_row_count_mismatch_is_fatal():
    dates, dec = _days("2001-01-01", "2001-01-05")
    with pytest.raises(AssemblyError):
        aggregate(np.ones((4, 2)), dates, dec, Bucket.MONTHLY)


def test_bucket_keys_for_monthly_view():
    dates, _ = _days("2001-01-30", "2001-02-02")
    keys = bucket_keys(dates, Bucket.MONTHLY)
    assert [str(k) for k in keys] == ["2001-01", "2001-01", "2001-02", "2001-02"]
