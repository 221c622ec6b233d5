from datetime import date, datetime, timedelta

import pytest

from scout.analytics import (
    AnalyticsRepository,
    TrendPoint,
    fetch_consumer_behavior,
    fetch_geographic_data,
    fetch_transaction_trends,
    group_daily_rows,
    project_forecast,
    summarize_behaviors,
    summarize_trends,
    summarize_window,
)
from scout.filters import Brand, DateRange, FilterContext
from scout.models import DailyMetric, RegionalPerformance, Transaction


def _daily(day, revenue, count=10, basket=7.0, duration=70.0):
    return {
        "date": day,
        "revenue": revenue,
        "transaction_count": count,
        "avg_basket_size": basket,
        "avg_duration": duration,
    }


def test_group_daily_rows_sums_duplicate_dates():
    rows = [
        {"date": "2024-01-01", "revenue": 100, "transaction_count": 10},
        {"date": "2024-01-01", "revenue": 50, "transaction_count": 5},
    ]
    grouped = group_daily_rows(rows)
    assert len(grouped) == 1
    assert grouped[0].date == "2024-01-01"
    assert grouped[0].revenue == 150
    assert grouped[0].volume == 15


def test_group_daily_rows_sums_basket_and_duration_and_keeps_order():
    rows = [
        _daily("2024-01-02", 10, basket=3, duration=30),
        _daily("2024-01-01", 20, basket=4, duration=40),
        _daily("2024-01-02", 5, basket=2, duration=20),
    ]
    grouped = group_daily_rows(rows)
    assert [p.date for p in grouped] == ["2024-01-02", "2024-01-01"]
    assert grouped[0].basket == 5
    assert grouped[0].duration == 50


def test_group_daily_rows_empty():
    assert group_daily_rows([]) == []


def test_forecast_formula():
    summary = project_forecast(1100, 1000)
    assert summary.change == pytest.approx(0.10)
    assert summary.forecast == pytest.approx(1210)
    assert summary.has_baseline is True


def test_forecast_without_prior_revenue_has_no_baseline():
    summary = project_forecast(500, 0)
    assert summary.change is None
    assert summary.forecast is None
    assert summary.has_baseline is False


def test_window_averages_basket_over_seven_days():
    points = [TrendPoint(date=f"d{i}", revenue=10, volume=1, basket=7, duration=14) for i in range(7)]
    totals = summarize_window(points)
    assert totals.revenue == 70
    assert totals.volume == 7
    assert totals.basket == pytest.approx(7)
    assert totals.duration == pytest.approx(14)


def test_summarize_trends_compares_last_two_weeks():
    start = date(2024, 1, 1)
    rows = [_daily((start + timedelta(days=i)).isoformat(), 1000 / 7) for i in range(7)]
    rows += [_daily((start + timedelta(days=7 + i)).isoformat(), 1100 / 7) for i in range(7)]

    result = summarize_trends(rows, compare_mode=True)

    assert len(result.trends) == 14
    assert result.summary.current == pytest.approx(1100)
    assert result.summary.previous == pytest.approx(1000)
    assert result.summary.change == pytest.approx(0.10)
    assert result.summary.forecast == pytest.approx(1210)
    assert [c["period"] for c in result.comparison] == ["Current", "Previous"]
    assert result.comparison[0]["revenue"] == pytest.approx(1100)


def test_summarize_trends_without_compare_mode_has_no_comparison():
    result = summarize_trends([_daily("2024-01-01", 100)])
    assert result.comparison is None
    assert result.summary.has_baseline is False
    payload = result.to_dict()
    assert payload["summary"]["hasBaseline"] is False
    assert payload["trends"][0]["volume"] == 10


def test_summarize_behaviors_counts_methods():
    rows = [
        {"request_method": "branded", "payment_method": "cash"},
        {"request_method": "unbranded", "payment_method": "cash"},
        {"request_method": "branded", "payment_method": "gcash"},
    ]
    behavior = summarize_behaviors(rows)
    assert behavior["requestMethods"] == {"branded": 2, "unbranded": 1}
    assert behavior["paymentMethods"] == {"cash": 2, "gcash": 1}
    assert behavior["acceptanceRate"] == 0


# ── Repository against SQLite ───────────────────────────────────────────

@pytest.fixture
def seeded(session_factory):
    with session_factory() as db:
        today = date(2024, 3, 31)
        for i in range(20):
            day = today - timedelta(days=i)
            db.add(DailyMetric(date=day, brand_id="alaska", revenue=100.0, transaction_count=10,
                               avg_basket_size=3.0, avg_duration=60.0))
            db.add(DailyMetric(date=day, brand_id="oishi", revenue=50.0, transaction_count=5,
                               avg_basket_size=2.0, avg_duration=30.0))
        db.add_all([
            RegionalPerformance(region_id="r1", region_name="NCR", revenue=900.0, transactions=30,
                                unique_consumers=12, avg_basket_size=3.1),
            RegionalPerformance(region_id="r2", region_name="Visayas", revenue=400.0, transactions=14,
                                unique_consumers=8, avg_basket_size=2.4),
        ])
        db.add_all([
            Transaction(id="t1", transaction_date=datetime(2024, 3, 30, 9), store_id="s1",
                        payment_method="cash", request_method="branded"),
            Transaction(id="t2", transaction_date=datetime(2024, 3, 29, 9), store_id="s1",
                        payment_method="gcash", request_method="branded"),
            Transaction(id="t3", transaction_date=datetime(2023, 1, 1, 9), store_id="s2",
                        payment_method="cash", request_method="pointing"),
        ])
        db.commit()
    return AnalyticsRepository(session_factory)


def test_fetch_transaction_trends_groups_brands_per_day(seeded):
    now = datetime(2024, 3, 31, 23, 0)
    result = fetch_transaction_trends(seeded, FilterContext(date_range=DateRange.LAST_7_DAYS), now=now)
    assert result.trends[0].date == "2024-03-24"
    assert result.trends[-1].date == "2024-03-31"
    assert all(p.revenue == 150 for p in result.trends)


def test_fetch_transaction_trends_applies_brand_filter(seeded):
    now = datetime(2024, 3, 31, 23, 0)
    filters = FilterContext(date_range=DateRange.LAST_30_DAYS, brand=Brand.OISHI)
    result = fetch_transaction_trends(seeded, filters, now=now)
    assert len(result.trends) == 20
    assert all(p.revenue == 50 for p in result.trends)
    assert result.summary.change == pytest.approx(0.0)


def test_recent_daily_metrics_newest_first_with_selected_columns(seeded):
    rows = seeded.recent_daily_metrics(3, ["date", "revenue", "transaction_count"])
    assert len(rows) == 3
    assert set(rows[0]) == {"date", "revenue", "transaction_count"}
    assert rows[0]["date"] == "2024-03-31"


def test_regional_performance_ordered_by_revenue(seeded):
    rows = fetch_geographic_data(seeded, FilterContext())
    assert [r["region_name"] for r in rows] == ["NCR", "Visayas"]
    assert seeded.regional_performance(limit=1)[0]["region_id"] == "r1"


def test_consumer_behavior_respects_date_range(seeded):
    now = datetime(2024, 3, 31, 23, 0)
    behavior = fetch_consumer_behavior(seeded, FilterContext(date_range=DateRange.LAST_7_DAYS), now=now)
    assert behavior["requestMethods"] == {"branded": 2}
    assert behavior["paymentMethods"] == {"cash": 1, "gcash": 1}
