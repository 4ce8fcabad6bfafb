from datetime import datetime, timedelta, timezone

import pytest

from study import days_since, priority_score, recency_weight, weighted_priority
from vocab import PracticeStatistics, level_for_rank_point

NOW = datetime(2026, 3, 15, 18, 30, tzinfo=timezone.utc)


def test_documented_priority_example():
    score = weighted_priority(
        rank_point=2,
        failure_rate=0.5,
        level=3,
        days_since_practice=float("inf"),
        quit_queue=True,
        in_queue=0,
        max_in_queue=5,
    )
    assert score == pytest.approx(0.6917, abs=1e-4)


def test_fresh_word_score():
    # rank 0, level 1, never practiced, never queued
    assert priority_score(PracticeStatistics(), max_in_queue=0) == pytest.approx(0.55)


@pytest.mark.parametrize(
    "days_ago, expected",
    [(0, 0.1), (1, 0.1), (2, 0.5), (4, 0.5), (5, 0.8), (9, 0.8), (10, 1.0), (40, 1.0)],
)
def test_recency_steps(days_ago, expected):
    practiced = NOW - timedelta(days=days_ago)
    assert recency_weight(days_since(practiced, NOW)) == expected


def test_days_since_counts_calendar_days():
    late_yesterday = datetime(2026, 3, 14, 23, 59, tzinfo=timezone.utc)
    assert days_since(late_yesterday, NOW) == 1
    assert days_since(None, NOW) == float("inf")


def test_naive_timestamps_are_treated_as_utc():
    assert days_since(datetime(2026, 3, 12, 8, 0), NOW) == 3


def test_score_drops_as_rank_and_level_grow():
    weak = PracticeStatistics(passed1=1, failed=1, total_attempts=2)
    strong = PracticeStatistics(passed1=10, passed2=10, failed=1, total_attempts=21)
    assert weak.rank_point < strong.rank_point
    assert weak.level < strong.level
    same_rate = dict(days_since_practice=3, quit_queue=False, in_queue=1, max_in_queue=4, failure_rate=0.2)
    low = weighted_priority(rank_point=1, level=2, **same_rate)
    high = weighted_priority(rank_point=20, level=5, **same_rate)
    assert low > high


def test_score_grows_with_failures_and_quitting():
    base = dict(rank_point=3, level=2, days_since_practice=1, in_queue=2, max_in_queue=4)
    assert weighted_priority(failure_rate=0.8, quit_queue=False, **base) > weighted_priority(
        failure_rate=0.1, quit_queue=False, **base
    )
    assert weighted_priority(failure_rate=0.1, quit_queue=True, **base) > weighted_priority(
        failure_rate=0.1, quit_queue=False, **base
    )


def test_less_queued_words_come_first():
    rarely = PracticeStatistics(in_queue=1)
    often = PracticeStatistics(in_queue=4)
    assert priority_score(rarely, 4, NOW) > priority_score(often, 4, NOW)


def test_negative_rank_points_stay_bounded():
    stats = PracticeStatistics(failed=5, total_attempts=5, quit_queue=True)
    assert stats.rank_point == -5
    assert 0.0 <= priority_score(stats, 1, NOW) <= 1.0


def test_rates_are_complementary():
    stats = PracticeStatistics(passed1=3, passed2=1, failed=2, total_attempts=6)
    assert stats.failure_rate == pytest.approx(1 / 3)
    assert stats.failure_rate + stats.success_rate == pytest.approx(1.0)
    untouched = PracticeStatistics()
    assert untouched.failure_rate == 0.0
    assert untouched.success_rate == 0.0


@pytest.mark.parametrize(
    "rank_point, level",
    [(-3, 1), (0, 1), (1, 2), (3, 2), (4, 3), (7, 3), (8, 4), (15, 4), (16, 5), (31, 5), (32, 6), (100, 6)],
)
def test_level_steps(rank_point, level):
    assert level_for_rank_point(rank_point) == level
