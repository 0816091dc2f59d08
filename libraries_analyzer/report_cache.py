"""
Time-boxed cache of report results.

The whole cache is cleared once the configured number of minutes has
passed since the last clear; entries do not expire individually.
"""

import logging
import os
import time


LOGGER = logging.getLogger(__name__)

CACHE_TTL_ENV_VAR = "REPORT_CACHE_TTL_MINUTES"
DEFAULT_CACHE_TTL_MINUTES = 0.5


def get_cache_ttl_minutes(value=None) -> float:
    """
    Resolve the cache window in minutes.

    :param value: Optional explicit value; defaults to ``REPORT_CACHE_TTL_MINUTES``.
    :returns: Non-negative float, falling back to the default when unparsable.
    """

    if value is None:
        value = os.environ.get(CACHE_TTL_ENV_VAR, DEFAULT_CACHE_TTL_MINUTES)
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CACHE_TTL_MINUTES
    return max(minutes, 0.0)


class ReportCache:
    """Report results keyed by report title, cleared every ``ttl_minutes``."""

    def __init__(self, ttl_minutes=None, clock=time.monotonic):
        self.ttl_minutes = get_cache_ttl_minutes(ttl_minutes)
        self._clock = clock
        self._entries = {}
        self._last_cleared = clock()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        self.refresh()
        return key in self._entries

    def refresh(self):
        """Clear every entry when the window since the last clear has elapsed."""
        now = self._clock()
        elapsed_minutes = (now - self._last_cleared) / 60.0
        if elapsed_minutes > self.ttl_minutes:
            if self._entries:
                LOGGER.debug("Report cache expired; dropping %s entries.", len(self._entries))
            self._entries.clear()
            self._last_cleared = now

    def get(self, key):
        self.refresh()
        return self._entries.get(key)

    def put(self, key, result):
        self.refresh()
        self._entries[key] = result

    def clear(self):
        self._entries.clear()
        self._last_cleared = self._clock()


def run_cached(cache, report, args, run_fn):
    """
    Serve a report from ``cache`` when possible, otherwise run and store it.

    Only argument-less reports are cached, and only when they returned rows.

    :param cache: ``ReportCache`` instance.
    :param report: Report to run.
    :param args: Argument values.
    :param run_fn: Callable ``(report, args) -> ReportResult``.
    :returns: ``ReportResult`` flagged ``cached=True`` on a cache hit.
    """

    if report.cacheable:
        cached = cache.get(report.title)
        if cached is not None:
            return cached._replace(cached=True)

    result = run_fn(report, args)
    if report.cacheable and result.rows:
        cache.put(report.title, result)
    return result
