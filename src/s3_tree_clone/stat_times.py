"""Nanosecond ctime/mtime accessors for stat results.

Linux and macOS lay out the timestamp fields of ``struct stat`` differently;
each platform gets one adapter, selected once at import time, and the rest of
the package only ever calls :func:`get_ctime` and :func:`get_mtime`.
"""

import os
import sys

NANOSECONDS_PER_SECOND = 1_000_000_000


class StatTimes:
    """Capability interface: creation and modification time of a stat result."""

    def ctime_ns(self, st: os.stat_result) -> int:
        raise NotImplementedError

    def mtime_ns(self, st: os.stat_result) -> int:
        raise NotImplementedError


class LinuxStatTimes(StatTimes):
    """``st_ctim``/``st_mtim`` timespecs, exposed by Python as ``st_*_ns``."""

    def ctime_ns(self, st: os.stat_result) -> int:
        return st.st_ctime_ns

    def mtime_ns(self, st: os.stat_result) -> int:
        return st.st_mtime_ns


class DarwinStatTimes(StatTimes):
    """``st_ctimespec``/``st_mtimespec``.

    Python exposes both layouts through ``st_*_ns``; older builds without the
    integer fields are rebuilt from the float seconds.
    """

    def ctime_ns(self, st: os.stat_result) -> int:
        value = getattr(st, "st_ctime_ns", None)
        if value is None:
            return int(st.st_ctime * NANOSECONDS_PER_SECOND)
        return value

    def mtime_ns(self, st: os.stat_result) -> int:
        value = getattr(st, "st_mtime_ns", None)
        if value is None:
            return int(st.st_mtime * NANOSECONDS_PER_SECOND)
        return value


def select_stat_times(platform: str = sys.platform) -> StatTimes:
    if platform == "darwin":
        return DarwinStatTimes()
    return LinuxStatTimes()


_adapter = select_stat_times()


def get_ctime(st: os.stat_result) -> int:
    return _adapter.ctime_ns(st)


def get_mtime(st: os.stat_result) -> int:
    return _adapter.mtime_ns(st)
