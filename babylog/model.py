"""
-------------
babylog.model
-------------

The event model and its line-oriented JSON codec.

An :class:`Event` is a single recorded activity: a feeding, a diaper change or
a pumping session. Events are serialized one per line as a JSON object:

.. code-block:: json

    {"timestamp": "2026-01-23T14:30:00+01:00", "type": "milk", "amount": 4.0}

Only the ``timestamp`` and the ``type`` are always present. ``amount``,
``side`` and ``duration`` are omitted when they carry no value.
"""
import json
import math
import re
from datetime import datetime


KINDS = ('milk', 'pump', 'breast', 'wet', 'bm', 'wet+bm')
"""Known event kinds. The set is open, other kinds are stored as-is."""

SIDES = ('left', 'right')

_FRACTION = re.compile(r'\.(\d+)')


class EventParseException(Exception):
    """Raised when an event cannot be decoded or has invalid field values.
    """
    pass


def parse_timestamp(value):
    """Parses an ISO-8601/RFC3339 timestamp into a timezone-aware datetime.

    Accepts a trailing ``Z`` for UTC and fractional seconds of any precision
    (anything past microseconds is dropped). A timestamp without an offset is
    interpreted in the local timezone.

    :param value: ``str``, the timestamp to parse.

    Returns a timezone-aware :class:`datetime.datetime`. Raises
    :class:`EventParseException` if the value is not a valid timestamp.
    """
    if not isinstance(value, str) or not value.strip():
        raise EventParseException('invalid timestamp: %r' % (value,))
    text = value.strip()
    if text[-1] in 'zZ':
        text = text[:-1] + '+00:00'
    text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise EventParseException('invalid timestamp %r: %s' % (value, e)) from e
    return aware(parsed)


def format_timestamp(timestamp):
    """Formats a timezone-aware datetime as an RFC3339 string, keeping its offset.
    """
    return timestamp.isoformat()


def aware(timestamp):
    """Returns the timestamp with a timezone, treating a naive one as local time."""
    if timestamp.tzinfo is None:
        return timestamp.astimezone()
    return timestamp


def now():
    """Current time in the local timezone."""
    return datetime.now().astimezone()


class Event:
    """A single recorded activity.

    Instances are immutable once created. Two events are equal when all of
    their fields are equal, with timestamps compared as absolute instants.

    :param timestamp: :class:`datetime.datetime`, timezone-aware time of the activity.
    :param kind: ``str``, the activity kind, one of :data:`KINDS` for the known kinds.
    :param amount: ``float``, quantity, meaningful for ``milk`` and ``pump``.
    :param side: ``str``, ``left`` or ``right``, meaningful for ``breast``.
    :param duration: ``int``, minutes, meaningful for ``breast``.
    """

    __slots__ = ('_timestamp', '_kind', '_amount', '_side', '_duration')

    def __init__(self, timestamp, kind, amount=0.0, side=None, duration=0):
        if not isinstance(timestamp, datetime):
            raise EventParseException('timestamp must be a datetime')
        timestamp = aware(timestamp)
        if not kind or not isinstance(kind, str):
            raise EventParseException('event type is required')
        if side and side not in SIDES:
            raise EventParseException('invalid side: %r' % (side,))
        object.__setattr__(self, '_timestamp', timestamp)
        object.__setattr__(self, '_kind', kind)
        object.__setattr__(self, '_amount', amount or 0.0)
        object.__setattr__(self, '_side', side or None)
        object.__setattr__(self, '_duration', duration or 0)

    timestamp = property(lambda self: self._timestamp)
    kind = property(lambda self: self._kind)
    amount = property(lambda self: self._amount)
    side = property(lambda self: self._side)
    duration = property(lambda self: self._duration)

    def __setattr__(self, name, value):
        raise AttributeError('Event is immutable')

    def __eq__(self, other):
        if not isinstance(other, Event):
            return NotImplemented
        return (self.timestamp == other.timestamp and self.kind == other.kind and
                self.amount == other.amount and self.side == other.side and
                self.duration == other.duration)

    def __hash__(self):
        return hash((self.timestamp, self.kind, self.amount, self.side, self.duration))

    def __repr__(self):
        return 'Event<%s @ %s>' % (self.kind, format_timestamp(self.timestamp))

    def __str__(self):
        return self.__repr__()


class EventSerializer:
    """Serializes :class:`Event` objects to JSON.

    :param encoding: ``str``, the encoding used by :meth:`serialize_bytes`.
    """

    def __init__(self, encoding='utf-8'):
        self.encoding = encoding

    def to_dict(self, event):
        """Returns the ``dict`` representation of the event, omitting empty optional fields.
        """
        data = {
            'timestamp': format_timestamp(event.timestamp),
            'type': event.kind,
        }
        if event.amount:
            data['amount'] = event.amount
        if event.side:
            data['side'] = event.side
        if event.duration:
            data['duration'] = event.duration
        return data

    def serialize(self, event):
        """Serializes the event to a single line of JSON, without the trailing newline.
        """
        return json.dumps(self.to_dict(event))

    def serialize_bytes(self, event):
        return (self.serialize(event) + '\n').encode(self.encoding)


class EventParser:
    """Parses events from JSON lines or decoded JSON objects.

    :param encoding: ``str``, the encoding of ``bytes`` input.
    """

    def __init__(self, encoding='utf-8'):
        self.encoding = encoding

    def parse_event(self, line):
        """Parses one serialized event.

        :param line: ``str`` or ``bytes``, a single JSON-encoded event.

        Returns the parsed :class:`Event`. Raises :class:`EventParseException`
        if the line is not valid JSON or does not describe a valid event.
        """
        if isinstance(line, bytes):
            try:
                line = line.decode(self.encoding)
            except UnicodeDecodeError as e:
                raise EventParseException('invalid encoding: %s' % e) from e
        try:
            data = json.loads(line)
        except ValueError as e:
            raise EventParseException('invalid JSON: %s' % e) from e
        return self.from_dict(data)

    def from_dict(self, data, default_timestamp=None):
        """Builds an :class:`Event` from a decoded JSON object.

        :param data: ``dict``, the decoded event.
        :param default_timestamp: :class:`datetime.datetime`, used when ``data``
            has no timestamp. If not given, the timestamp is required.
        """
        if not isinstance(data, dict):
            raise EventParseException('event must be a JSON object')

        raw_ts = data.get('timestamp')
        if raw_ts is None or raw_ts == '':
            if default_timestamp is None:
                raise EventParseException('missing timestamp')
            timestamp = default_timestamp
        else:
            timestamp = parse_timestamp(raw_ts)

        kind = data.get('type', data.get('kind'))
        if not kind or not isinstance(kind, str):
            raise EventParseException('missing event type')

        return Event(timestamp=timestamp,
                     kind=kind,
                     amount=self._number(data, 'amount'),
                     side=self._side(data),
                     duration=self._minutes(data))

    def _number(self, data, key):
        value = data.get(key)
        if value is None:
            return 0.0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EventParseException('%s must be a number' % key)
        try:
            value = float(value)
        except OverflowError:
            value = math.inf
        if not math.isfinite(value):
            raise EventParseException('%s must be a finite number' % key)
        return value

    def _minutes(self, data):
        value = self._number(data, 'duration')
        if not value.is_integer():
            raise EventParseException('duration must be a whole number of minutes')
        return int(value)

    def _side(self, data):
        side = data.get('side')
        if side is None or side == '':
            return None
        if side not in SIDES:
            raise EventParseException('invalid side: %r' % (side,))
        return side
