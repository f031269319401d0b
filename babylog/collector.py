"""
-----------------
babylog.collector
-----------------

The activity log server implementation.

The :class:`Collector` exposes an :class:`babylog.storeapi.EventStore` over HTTP:

* ``/api/log`` - ``POST`` records an event, ``GET`` lists the events newest first,
  ``PUT`` replaces an event and ``DELETE`` removes a batch of events.
* ``/api/log/last`` - ``DELETE`` (or ``POST``) removes the last recorded event.
* ``/api/stats`` - ``GET`` returns the totals and the events in a time window.

Everything else is served from the public directory.
"""
from http import HTTPStatus
from logging import getLogger

from babylog.comm import BadRequest, HTTPError, NotFound, Response, Server
from babylog.model import EventParser, EventSerializer, EventParseException, now, parse_timestamp
from babylog.stats import aggregate, newest_first, paginate
from babylog.storeapi import EventNotFound, EventStoreException


log = getLogger(__name__)


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50


def positive_int(value, default):
    """Parses a positive integer query parameter, falling back to ``default``."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


class Collector:
    """Activity log server.

    Collects the events and stores them in the event store, and answers the
    queries for the stored events.

    :param store: :class:`babylog.storeapi.EventStore`, store instance.
    :param hostname: ``str``, server hostname. Default is '0.0.0.0'.
    :param port: ``int``, server port. Default is 4011.
    :param public_dir: ``str``, the directory of the static web client files.
    """

    def __init__(self, store, hostname='0.0.0.0', port=4011, public_dir=None):
        self.hostname = hostname
        self.port = port
        self.public_dir = public_dir
        self.store = store
        self.server = None
        self.parser = EventParser()
        self.serializer = EventSerializer()

    def run(self):
        """Run the server.

        This operation is blocking.
        """
        self.start()
        self.server.join()

    def start(self):
        """Start the server in the background.
        """
        self.server = Server(host=self.hostname, port=self.port, public_dir=self.public_dir)
        self.server.on_action('/api/log', 'POST', self._create_event)
        self.server.on_action('/api/log', 'GET', self._list_events)
        self.server.on_action('/api/log', 'PUT', self._update_event)
        self.server.on_action('/api/log', 'DELETE', self._delete_events)
        self.server.on_action('/api/log/last', ['DELETE', 'POST'], self._delete_last)
        self.server.on_action('/api/stats', 'GET', self._stats)
        self.server.start()
        self.port = self.server.port

    def stop(self):
        """Stop the server and close the store.
        """
        try:
            if self.server:
                self.server.stop()
        finally:
            if self.store:
                self.store.close()
        log.info('Collector stopped.')

    def _parse_event(self, data, default_timestamp=None):
        try:
            return self.parser.from_dict(data, default_timestamp=default_timestamp)
        except EventParseException as e:
            raise BadRequest(str(e))

    def _parse_timestamp(self, value):
        try:
            return parse_timestamp(value)
        except EventParseException as e:
            raise BadRequest(str(e))

    def _call_store(self, operation, *args):
        try:
            return operation(*args)
        except EventNotFound as e:
            raise NotFound(str(e))
        except EventStoreException as e:
            log.error('Store error: %s', e)
            raise HTTPError(HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

    def _page(self, request):
        return (positive_int(request.param('page'), DEFAULT_PAGE),
                positive_int(request.param('limit'), DEFAULT_LIMIT))

    def _create_event(self, request):
        event = self._parse_event(request.json(), default_timestamp=now())
        self._call_store(self.store.save, event)
        log.debug('Saved %s', event)
        return Response.json({'status': 'saved',
                              'timestamp': self.serializer.to_dict(event)['timestamp']},
                             status=HTTPStatus.CREATED)

    def _list_events(self, request):
        page, limit = self._page(request)
        events, total = self.store.get_page(page, limit)
        return Response.json({
            'logs': [self.serializer.to_dict(event) for event in events],
            'total': total,
            'page': page,
            'limit': limit,
        })

    def _update_event(self, request):
        raw_ts = request.param('timestamp')
        if not raw_ts:
            raise BadRequest('Missing timestamp parameter')
        original = self._parse_timestamp(raw_ts)
        event = self._parse_event(request.json(), default_timestamp=original)
        self._call_store(self.store.update, original, event)
        return Response.json({'status': 'updated'})

    def _delete_events(self, request):
        data = request.json()
        if not isinstance(data, list):
            raise BadRequest('Expected a list of timestamps')
        timestamps = [self._parse_timestamp(value) for value in data]
        count = self._call_store(self.store.delete_batch, timestamps)
        return Response.json({'status': 'deleted', 'count': count})

    def _delete_last(self, request):
        self._call_store(self.store.delete_last)
        return Response.json({'status': 'deleted'})

    def _stats(self, request):
        page, limit = self._page(request)
        events = newest_first(self.store.get_all(), request.param('duration'))
        stats = aggregate(events).to_dict()
        stats.update({
            'logs': [self.serializer.to_dict(event) for event in paginate(events, page, limit)],
            'total': len(events),
            'page': page,
            'limit': limit,
        })
        return Response.json(stats)
