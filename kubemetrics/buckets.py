"""Histogram bucket layouts tuned around a scrape duration."""

from __future__ import annotations

from datetime import timedelta

# Default Prometheus histogram buckets, in seconds.
DEF_BUCKETS: tuple[float, ...] = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)


def buckets_for_scrape_duration(scrape_timeout: timedelta) -> list[float]:
    """Return the default buckets extended with buckets around ``scrape_timeout``.

    Timeouts longer than the largest default bucket add a bucket halfway to the
    timeout, the timeout itself, and 1.5x and 2x the timeout.  Shorter timeouts
    insert just the timeout, unless a default bucket is already close to it.
    """
    buckets = list(DEF_BUCKETS)
    max_bucket = buckets[-1]
    timeout = scrape_timeout.total_seconds()

    if timeout > max_bucket:
        halfway = max_bucket + (timeout - max_bucket) / 2
        buckets.extend((halfway, timeout, timeout * 1.5, timeout * 2.0))
    elif timeout < max_bucket:
        index = next(
            (i for i, bucket in enumerate(buckets) if bucket > timeout),
            len(buckets) - 1,
        )
        bucket = buckets[index]
        smallest = buckets[0]
        if bucket - timeout < smallest or (
            index > 0 and timeout - buckets[index - 1] < smallest
        ):
            # Close enough to an existing bucket already.
            return buckets
        buckets.insert(index, timeout)

    return buckets