"""
----------------
babylog.logstore
----------------

Append-only log implementation of the Event Store.

This module provides an implementation of the :class:`babylog.storeapi.EventStore`
that keeps the events in a single plain-text log file, one JSON-encoded event per
line, in the order in which the events were saved. The whole log is mirrored in
memory, so reads never touch the file.

New events are appended to the end of the file. Updates and deletes rewrite the
whole file atomically: the new content is written to a temporary file in the
same directory, synced, and then renamed over the log file. A failed write never
leaves the in-memory view and the file out of sync.

When the log file grows past a configured size, the next save first *rotates*
it: the file is renamed to ``<log-file>.<YYYY-MM-DDTHH-MM-SS>`` and a new, empty
log file is started. Only the most recent backups are retained. Note that a
rotation clears the in-memory view as well, so the events in the backup files
are no longer returned by the store.

Here is an example of usage of the store:

.. code-block:: python

    from babylog.logstore import LogEventStore
    from babylog.model import Event, now

    store = LogEventStore('baby.log', max_size=10 * 1024 * 1024, max_backups=5)

    store.save(Event(timestamp=now(), kind='milk', amount=4.0))
    store.save(Event(timestamp=now(), kind='wet'))

    events, total = store.get_page(page=1, page_size=10)
    for event in events:
        print(event.kind)

would print::

    >> wet
    >> milk

"""

from contextlib import contextmanager
from datetime import datetime
from logging import getLogger
from os.path import abspath, basename, dirname, exists, getsize, isfile, join as join_paths
from tempfile import NamedTemporaryFile
from threading import Condition, Lock
import os

from babylog.model import EventParser, EventSerializer, EventParseException, aware
from babylog.storeapi import (EventStore,
                              EventStoreException,
                              EventWriteException,
                              EventReadException,
                              EventNotFound,
                              RotationException,
                              StoreEmpty)


log = getLogger(__name__)


BACKUP_TIME_FORMAT = '%Y-%m-%dT%H-%M-%S'


class ReadWriteLock:
    """A readers-writer lock.

    Any number of readers may hold the lock together, while a writer holds it
    exclusively. Writers are preferred: once a writer is waiting, new readers
    block until it has acquired and released the lock.

    The lock is not reentrant.

    .. code-block:: python

        lock = ReadWriteLock()

        with lock.read_locked():
            ...  # shared access

        with lock.write_locked():
            ...  # exclusive access

    """
    def __init__(self):
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        """Context manager holding the lock in shared (read) mode.
        """
        self.acquire_read()
        try:
            yield self
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        """Context manager holding the lock in exclusive (write) mode.
        """
        self.acquire_write()
        try:
            yield self
        finally:
            self.release_write()


class AtomicFile:
    """Replaces the content of a file atomically.

    The content is first written to a temporary file in the same directory as
    the target, the system buffers are synced, and then the temporary file is
    renamed as the target file. The target is never left half-written: it either
    has the old content or the new one.

    :param path: ``str``, the path to the target file.
    """
    def __init__(self, path):
        self.path = path

    def write(self, data):
        """Replaces the content of the file with ``data``.

        :param data: ``bytes``, the new content.

        Raises :class:`OSError` if any step fails. The temporary file is removed
        in that case.
        """
        directory = dirname(self.path)
        tmpf = NamedTemporaryFile(dir=directory, prefix='.%s-' % basename(self.path),
                                  suffix='.tmp', delete=False)
        try:
            with tmpf:
                tmpf.write(data)
                tmpf.flush()
                os.fsync(tmpf.fileno())
            os.replace(tmpf.name, self.path)
        except BaseException:
            try:
                os.unlink(tmpf.name)
            except OSError:
                pass
            raise


def backup_path(file_path, when):
    """Returns the backup path for the log file rotated at ``when``.

    The name is ``<file_path>.<YYYY-MM-DDTHH-MM-SS>``, so sorting the backups by
    name sorts them by creation time. If backups for that second already exist
    (several rotations within the same second) a zero padded counter, one above
    the highest one in use, is appended.

    :param file_path: ``str``, the path to the active log file.
    :param when: :class:`datetime.datetime`, the time of rotation.
    """
    path = '%s.%s' % (file_path, when.strftime(BACKUP_TIME_FORMAT))
    name = basename(path)
    counters = []
    for sibling in os.listdir(dirname(path)):
        if sibling == name:
            counters.append(0)
        elif sibling.startswith(name + '.') and sibling[len(name) + 1:].isdigit():
            counters.append(int(sibling[len(name) + 1:]))
    if not counters:
        return path
    return '%s.%03d' % (path, max(counters) + 1)


def list_backups(file_path):
    """Lists the backups of the log file, oldest first.

    Backups are the regular files in the same directory whose names start with
    the log file name followed by a dot.
    """
    directory = dirname(file_path)
    prefix = basename(file_path) + '.'
    backups = []
    for name in os.listdir(directory):
        path = join_paths(directory, name)
        if name.startswith(prefix) and isfile(path):
            backups.append(path)
    return sorted(backups)


def prune_backups(file_path, keep):
    """Removes the oldest backups of the log file so that at most ``keep`` remain.

    Returns the ``list`` of removed paths. Raises :class:`OSError` if the
    directory cannot be listed or a backup cannot be removed.
    """
    backups = list_backups(file_path)
    excess = backups[:max(len(backups) - keep, 0)]
    for path in excess:
        os.remove(path)
        log.info('Removed old backup %s', path)
    return excess


class LogEventStore(EventStore):
    """An :class:`babylog.storeapi.EventStore` that keeps the events in a single append-only log file.

    The events are kept in memory in the order of saving, and mirrored to the
    log file, one JSON-encoded event per line. The file is replayed when the store
    is created. Lines that cannot be parsed are skipped; their count is available
    in :attr:`skipped_lines`.

    All operations are serialized with a :class:`ReadWriteLock`: reads share the
    lock, every mutation holds it exclusively. The store assumes it is the only
    writer of the log file.

    Events are identified by their timestamp. When several events share the same
    timestamp, :meth:`update` replaces the first one (in saving order) and
    :meth:`delete_batch` removes all of them.

    Every update and delete rewrites the whole file, so their cost grows with
    the number of stored events.

    The instances of this class are thread-safe and can be shared between threads.

    :param file_path: ``str``, path to the log file. It is created on the first save.
    :param max_size: ``int``, size in bytes at which the log file is rotated before
        the next save. ``0`` disables rotation.
    :param max_backups: ``int``, number of rotated backups to retain. ``0`` keeps
        all of them.
    """
    def __init__(self, file_path, max_size=0, max_backups=0):
        self.file_path = abspath(file_path)
        self.max_size = max_size
        self.max_backups = max_backups
        self.serializer = EventSerializer()
        self.parser = EventParser()
        self.lock = ReadWriteLock()
        self.entries = []
        self.skipped_lines = 0
        self.closed = False
        self._load()

    def _load(self):
        with self.lock.write_locked():
            self.entries = []
            self.skipped_lines = 0
            if not exists(self.file_path):
                log.info('Log file %s does not exist yet. Starting empty.', self.file_path)
                return
            try:
                with open(self.file_path, 'rb') as log_file:
                    for lineno, line in enumerate(log_file, start=1):
                        if not line.strip():
                            continue
                        try:
                            self.entries.append(self.parser.parse_event(line))
                        except EventParseException as e:
                            self.skipped_lines += 1
                            log.warning('Skipping corrupt line %d in %s: %s', lineno, self.file_path, e)
            except OSError as e:
                raise EventReadException('Failed to read %s: %s' % (self.file_path, e)) from e
            log.info('Loaded %d events from %s (%d corrupt lines skipped).',
                     len(self.entries), self.file_path, self.skipped_lines)

    def _check_open(self):
        if self.closed:
            raise EventStoreException('Store is closed')

    def _now(self):
        return datetime.now()

    def save(self, event):
        with self.lock.write_locked():
            self._check_open()
            if self._needs_rotation():
                try:
                    self._rotate()
                except OSError as e:
                    raise RotationException('rotation failed: %s' % e) from e
            self._append(event)
            self.entries.append(event)

    def _needs_rotation(self):
        if self.max_size <= 0:
            return False
        try:
            return getsize(self.file_path) >= self.max_size
        except FileNotFoundError:
            return False
        except OSError as e:
            raise RotationException('rotation failed: %s' % e) from e

    def _append(self, event):
        data = self.serializer.serialize_bytes(event)
        try:
            with open(self.file_path, 'a+b') as log_file:
                size = log_file.seek(0, os.SEEK_END)
                if size:
                    # terminate a last line that was cut short
                    log_file.seek(size - 1)
                    if log_file.read(1) != b'\n':
                        data = b'\n' + data
                try:
                    log_file.write(data)
                    log_file.flush()
                    os.fsync(log_file.fileno())
                except OSError:
                    self._truncate(log_file, size)
                    raise
        except OSError as e:
            raise EventWriteException('Failed to write event to %s: %s' % (self.file_path, e)) from e

    def _truncate(self, log_file, size):
        try:
            log_file.truncate(size)
        except OSError as e:
            log.error('Failed to restore %s to %d bytes after a failed write: %s', self.file_path, size, e)

    def _rotate(self):
        backup = backup_path(self.file_path, self._now())
        os.rename(self.file_path, backup)
        log.info('Rotated %s to %s', self.file_path, backup)

        if self.max_backups > 0:
            try:
                prune_backups(self.file_path, self.max_backups)
            except OSError as e:
                log.error('Error pruning backups of %s: %s', self.file_path, e)

        # the live view follows the new, empty log file
        self.entries = []

    def _rewrite(self, entries):
        data = b''.join(self.serializer.serialize_bytes(event) for event in entries)
        try:
            AtomicFile(self.file_path).write(data)
        except OSError as e:
            raise EventWriteException('Failed to rewrite %s: %s' % (self.file_path, e)) from e
        self.entries = entries

    def get_all(self):
        with self.lock.read_locked():
            return list(self.entries)

    def get_page(self, page, page_size):
        if page < 1 or page_size < 1:
            raise ValueError('page and page_size must be positive')
        with self.lock.read_locked():
            total = len(self.entries)
            start = total - (page - 1) * page_size
            if start <= 0:
                return [], total
            end = max(start - page_size, 0)
            return self.entries[end:start][::-1], total

    def delete_batch(self, timestamps):
        instants = set(aware(ts) for ts in timestamps)
        if not instants:
            return 0
        with self.lock.write_locked():
            self._check_open()
            kept = [event for event in self.entries if event.timestamp not in instants]
            removed = len(self.entries) - len(kept)
            self._rewrite(kept)
            log.debug('Deleted %d events.', removed)
            return removed

    def delete_last(self):
        with self.lock.write_locked():
            self._check_open()
            if not self.entries:
                raise StoreEmpty('empty log')
            self._rewrite(self.entries[:-1])

    def update(self, timestamp, event):
        key = aware(timestamp)
        with self.lock.write_locked():
            self._check_open()
            for idx, entry in enumerate(self.entries):
                if entry.timestamp == key:
                    break
            else:
                raise EventNotFound('entry not found')
            entries = list(self.entries)
            entries[idx] = event
            self._rewrite(entries)

    def close(self):
        with self.lock.write_locked():
            self.closed = True
        log.info('Log store %s closed', self.file_path)
