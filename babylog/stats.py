"""
-------------
babylog.stats
-------------

Time-window filtering and aggregation of events.

The statistics are computed over the events that fall in one of the supported
time windows:

* ``1h`` - events in the last hour.
* ``24h`` - events in the last 24 hours.
* ``today`` - events that happened today, in local time.
* ``all`` - all events. This is the default, and is also used for any unknown window.
"""
from datetime import timedelta
from logging import getLogger

from babylog.model import now as local_now


log = getLogger(__name__)


LAST_HOUR = '1h'
LAST_DAY = '24h'
TODAY = 'today'
ALL = 'all'

DURATIONS = (LAST_HOUR, LAST_DAY, TODAY, ALL)


def window_filter(duration, now=None):
    """Returns a predicate that checks whether an event falls in the given time window.

    :param duration: ``str``, one of :data:`DURATIONS`. ``None``, empty or
        unknown values select all events.
    :param now: :class:`datetime.datetime`, the reference time. Defaults to the
        current local time.
    """
    now = now or local_now()

    if duration == LAST_HOUR:
        return lambda event: now - event.timestamp <= timedelta(hours=1)
    if duration == LAST_DAY:
        return lambda event: now - event.timestamp <= timedelta(hours=24)
    if duration == TODAY:
        today = now.astimezone().date()
        return lambda event: event.timestamp.astimezone().date() == today
    if duration and duration != ALL:
        log.debug('Unknown duration %r, using all events.', duration)
    return lambda event: True


def newest_first(events, duration=None, now=None):
    """Returns the events in the given window, newest (last saved) first.

    :param events: ``list`` of :class:`babylog.model.Event`, oldest first.
    """
    matches = window_filter(duration, now)
    return [event for event in reversed(events) if matches(event)]


class Stats:
    """Totals of the events, by kind.

    * ``total_milk`` - sum of the amounts of ``milk`` events.
    * ``total_pumped`` - sum of the amounts of ``pump`` events.
    * ``total_breast_time`` - sum of the durations (minutes) of ``breast`` events.
    * ``diaper_wet`` - number of ``wet`` and ``wet+bm`` events.
    * ``diaper_bm`` - number of ``bm`` and ``wet+bm`` events.
    """

    def __init__(self):
        self.total_milk = 0.0
        self.total_pumped = 0.0
        self.total_breast_time = 0
        self.diaper_wet = 0
        self.diaper_bm = 0

    def add(self, event):
        if event.kind == 'milk':
            self.total_milk += event.amount
        elif event.kind == 'pump':
            self.total_pumped += event.amount
        elif event.kind == 'breast':
            self.total_breast_time += event.duration
        elif event.kind == 'wet':
            self.diaper_wet += 1
        elif event.kind == 'bm':
            self.diaper_bm += 1
        elif event.kind == 'wet+bm':
            self.diaper_wet += 1
            self.diaper_bm += 1

    def to_dict(self):
        return {
            'total_milk': self.total_milk,
            'total_pumped': self.total_pumped,
            'total_breast_time': self.total_breast_time,
            'diaper_wet': self.diaper_wet,
            'diaper_bm': self.diaper_bm,
        }


def aggregate(events):
    """Computes the :class:`Stats` of the given events."""
    stats = Stats()
    for event in events:
        stats.add(event)
    return stats


def paginate(events, page, limit):
    """Slices one 1-based page of ``limit`` events out of an already ordered list."""
    start = (page - 1) * limit
    return events[start:start + limit]
