from datetime import timedelta

import pytest

from kubemetrics.buckets import DEF_BUCKETS, buckets_for_scrape_duration


def _assert_strictly_increasing(buckets):
    last = 0.0
    for bucket in buckets:
        assert bucket > last
        last = bucket


@pytest.mark.parametrize("seconds", [15, 5, DEF_BUCKETS[-1]])
def test_buckets_strictly_increasing(seconds):
    _assert_strictly_increasing(buckets_for_scrape_duration(timedelta(seconds=seconds)))


def test_long_timeout_includes_buckets_around_timeout():
    buckets = buckets_for_scrape_duration(timedelta(seconds=15))
    assert 15.0 in buckets
    assert 30.0 in buckets


def test_short_timeout_includes_timeout_bucket():
    assert 5.0 in buckets_for_scrape_duration(timedelta(seconds=5))


def test_timeout_equal_to_max_bucket_includes_it():
    max_bucket = DEF_BUCKETS[-1]
    buckets = buckets_for_scrape_duration(timedelta(seconds=max_bucket))
    assert max_bucket in buckets
    assert buckets == list(DEF_BUCKETS)


def test_short_timeout_far_from_defaults_is_inserted():
    buckets = buckets_for_scrape_duration(timedelta(seconds=3))
    assert 3.0 in buckets
    assert len(buckets) == len(DEF_BUCKETS) + 1
    _assert_strictly_increasing(buckets)


def test_defaults_are_not_modified():
    before = tuple(DEF_BUCKETS)
    first = buckets_for_scrape_duration(timedelta(seconds=3))
    expected = list(first)
    first.append(100.0)
    assert DEF_BUCKETS == before
    second = buckets_for_scrape_duration(timedelta(seconds=3))
    assert second == expected
    assert 100.0 not in second