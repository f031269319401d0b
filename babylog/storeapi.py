"""
----------------
babylog.storeapi
----------------

Event Store API
^^^^^^^^^^^^^^^

Defines classes, methods and exceptions to be used when implementing an Event Store.
"""
from abc import abstractmethod


class EventStore:
    """EventStore is the basic interface for interaction with the events.

    The store keeps the events in the order in which they were saved (oldest
    first). Events are addressed by their timestamp; timestamps are compared as
    absolute instants, so the same instant expressed in different timezones
    identifies the same event.

    An instance of this class is thread-safe.
    """
    @abstractmethod
    def save(self, event):
        """Appends an event to the store.

        This method is guaranteed to be atomic in the sense that the storage will
        either succeed to write and flush the event, or it will fail completely. In
        either case, the storage will be left in a consistent state.

        :param event: :class:`babylog.model.Event`, the Event object to store.

        This method does not return any value.
        """
        pass

    @abstractmethod
    def get_all(self):
        """Returns a copy of all stored events, oldest first.
        """
        pass

    @abstractmethod
    def get_page(self, page, page_size):
        """Returns one page of events, newest first.

        :param page: ``int``, 1-based page number.
        :param page_size: ``int``, maximal number of events on a page.

        Returns a tuple ``(events, total)`` where ``total`` is the number of all
        stored events, regardless of the page.
        """
        pass

    @abstractmethod
    def update(self, timestamp, event):
        """Replaces the first event with the given timestamp.

        :param timestamp: :class:`datetime.datetime`, the timestamp of the event to replace.
        :param event: :class:`babylog.model.Event`, the replacement. Its timestamp
            may differ from ``timestamp``.

        Raises :class:`EventNotFound` if there is no event with that timestamp.
        """
        pass

    @abstractmethod
    def delete_batch(self, timestamps):
        """Deletes all events whose timestamp matches any of the given timestamps.

        :param timestamps: iterable of :class:`datetime.datetime`.

        Returns the number of deleted events.
        """
        pass

    @abstractmethod
    def delete_last(self):
        """Deletes the most recently saved event.

        Raises :class:`StoreEmpty` if there are no events.
        """
        pass

    @abstractmethod
    def close(self):
        """Close and cleanup the underlying store.
        """
        pass


class EventStoreException(Exception):
    """General store error.
    """
    pass


class EventWriteException(EventStoreException):
    """Represents an error while writing an event to the underlying storage.
    """
    pass


class RotationException(EventWriteException):
    """The log file could not be rotated before a write.
    """
    pass


class EventReadException(EventStoreException):
    """Represents an error while reading an event from the underlying storage.
    """
    pass


class EventNotFound(EventReadException):
    """Raised if there is no event found in the underlying storage.
    """
    pass


class StoreEmpty(EventNotFound):
    """Raised when an operation needs at least one event but the store is empty.
    """
    pass
