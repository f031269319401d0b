from babylog.logstore import (ReadWriteLock,
                              AtomicFile,
                              LogEventStore,
                              backup_path,
                              list_backups,
                              prune_backups)
from babylog.model import Event
from babylog.storeapi import (EventNotFound,
                              EventStoreException,
                              EventWriteException,
                              RotationException,
                              StoreEmpty)
from datetime import datetime, timedelta, timezone
from threading import Thread, Event as Flag
from unittest import mock
import babylog.logstore
import os
import tempfile


UTC = timezone.utc
CET = timezone(timedelta(hours=1))
T0 = datetime(2026, 1, 23, 12, 0, tzinfo=UTC)


def _events(count, kind='wet'):
    return [Event(timestamp=T0 + timedelta(minutes=i), kind=kind) for i in range(count)]


def _lines(path):
    with open(path) as log_file:
        return log_file.read().splitlines()


def test_read_write_lock_shared_readers():
    lock = ReadWriteLock()
    inside = Flag()
    release = Flag()

    def reader():
        with lock.read_locked():
            inside.set()
            release.wait(2)

    thread = Thread(target=reader)
    thread.start()
    assert inside.wait(2)

    # second reader enters while the first still holds the lock
    with lock.read_locked():
        pass

    release.set()
    thread.join()


def test_read_write_lock_writer_is_exclusive():
    lock = ReadWriteLock()
    acquired = Flag()

    def writer():
        with lock.write_locked():
            acquired.set()

    lock.acquire_read()
    thread = Thread(target=writer)
    thread.start()

    assert acquired.wait(0.2) is False
    lock.release_read()
    assert acquired.wait(2)
    thread.join()


def test_atomic_file_write():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'data')
        AtomicFile(path).write(b'first')
        AtomicFile(path).write(b'second')

        with open(path, 'rb') as f:
            assert f.read() == b'second'
        assert os.listdir(tmpdir) == ['data']


@mock.patch.object(babylog.logstore.os, 'replace')
def test_atomic_file_write_failure_keeps_old_content(m_replace):
    m_replace.side_effect = OSError('disk full')
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'data')
        with open(path, 'wb') as f:
            f.write(b'old')

        try:
            AtomicFile(path).write(b'new')
            assert False, 'expected OSError'
        except OSError:
            pass

        with open(path, 'rb') as f:
            assert f.read() == b'old'
        assert os.listdir(tmpdir) == ['data']


def test_backup_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        when = datetime(2026, 1, 23, 14, 30, 5)

        first = backup_path(path, when)
        assert first == path + '.2026-01-23T14-30-05'

        open(first, 'w').close()
        second = backup_path(path, when)
        assert second == path + '.2026-01-23T14-30-05.001'
        assert sorted([second, first]) == [first, second]


def test_list_and_prune_backups():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        names = ['baby.log.2026-01-0%dT00-00-00' % day for day in range(1, 6)]
        for name in names + ['baby.log', 'other.log.2026-01-01T00-00-00']:
            open(os.path.join(tmpdir, name), 'w').close()

        assert list_backups(path) == [os.path.join(tmpdir, name) for name in names]

        removed = prune_backups(path, 2)

        assert removed == [os.path.join(tmpdir, name) for name in names[:3]]
        assert sorted(os.listdir(tmpdir)) == sorted(['baby.log', 'other.log.2026-01-01T00-00-00'] + names[3:])


def test_new_store_without_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        assert store.get_all() == []
        assert store.get_page(1, 10) == ([], 0)
        assert not os.path.exists(os.path.join(tmpdir, 'baby.log'))


def test_save_and_reload():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path)
        events = _events(5) + [Event(timestamp=T0 - timedelta(days=1), kind='milk', amount=3.5)]
        for event in events:
            store.save(event)

        assert store.get_all() == events
        assert len(_lines(path)) == 6

        reloaded = LogEventStore(path)
        assert reloaded.get_all() == events
        assert reloaded.skipped_lines == 0


def test_relative_path_is_made_absolute():
    with tempfile.TemporaryDirectory() as tmpdir:
        cwd = os.getcwd()
        os.chdir(tmpdir)
        try:
            store = LogEventStore('baby.log')
        finally:
            os.chdir(cwd)
        assert os.path.isabs(store.file_path)
        assert os.path.samefile(os.path.dirname(store.file_path), tmpdir)


def test_load_skips_corrupt_lines():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        with open(path, 'w') as f:
            f.write('{"timestamp": "2026-01-23T12:00:00Z", "type": "wet"}\n')
            f.write('{"timestamp": "2026-01-23T12:05:00Z", "ty\n')
            f.write('\n')
            f.write('garbage\n')
            f.write('{"timestamp": "2026-01-23T12:10:00Z", "type": "milk", "amount": 2}\n')

        store = LogEventStore(path)

        assert [e.kind for e in store.get_all()] == ['wet', 'milk']
        assert store.skipped_lines == 2


def test_save_after_unterminated_last_line():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        with open(path, 'w') as f:
            f.write('{"timestamp": "2026-01-23T12:00:00Z", "type": "wet"}')

        store = LogEventStore(path)
        event = Event(timestamp=T0 + timedelta(hours=1), kind='bm')
        store.save(event)

        expected = [Event(timestamp=T0, kind='wet'), event]
        assert store.get_all() == expected
        assert len(_lines(path)) == 2

        reloaded = LogEventStore(path)
        assert reloaded.get_all() == expected
        assert reloaded.skipped_lines == 0


def test_get_all_returns_copy():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        store.save(_events(1)[0])

        events = store.get_all()
        events.clear()

        assert len(store.get_all()) == 1


def test_get_page_partitions_newest_first():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        events = _events(23)
        for event in events:
            store.save(event)

        expected = list(reversed(events))
        for page_size in (1, 5, 10, 23, 50):
            collected = []
            page = 1
            while True:
                chunk, total = store.get_page(page, page_size)
                assert total == 23
                if not chunk:
                    break
                assert len(chunk) <= page_size
                collected.extend(chunk)
                page += 1
            assert collected == expected

        chunk, total = store.get_page(3, 10)
        assert chunk == expected[20:]
        assert total == 23


def test_get_page_follows_save_order_not_timestamps():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        late = Event(timestamp=T0 + timedelta(hours=1), kind='milk', amount=1.0)
        early = Event(timestamp=T0, kind='wet')
        store.save(late)
        store.save(early)

        assert store.get_page(1, 10) == ([early, late], 2)


def test_get_page_invalid_arguments():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        for page, size in [(0, 10), (1, 0), (-1, -1)]:
            try:
                store.get_page(page, size)
                assert False, 'expected ValueError'
            except ValueError:
                pass


def test_example_page():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        milk = Event(timestamp=T0, kind='milk', amount=4.0)
        wet = Event(timestamp=T0 + timedelta(minutes=30), kind='wet')
        store.save(milk)
        store.save(wet)

        assert store.get_page(1, 10) == ([wet, milk], 2)


def test_delete_batch_matches_instants_across_zones():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path)
        events = _events(4)
        for event in events:
            store.save(event)
        # duplicate of the second event's timestamp
        store.save(Event(timestamp=events[1].timestamp, kind='bm'))

        count = store.delete_batch([events[1].timestamp.astimezone(CET),
                                    events[3].timestamp.astimezone(CET)])

        assert count == 3
        assert store.get_all() == [events[0], events[2]]
        assert LogEventStore(path).get_all() == [events[0], events[2]]


def test_delete_batch_no_match_and_empty():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path)

        assert store.delete_batch([]) == 0
        assert not os.path.exists(path)

        store.save(_events(1)[0])
        assert store.delete_batch([T0 - timedelta(days=1)]) == 0
        assert len(store.get_all()) == 1


def test_delete_last_uses_save_order():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path)
        late = Event(timestamp=T0 + timedelta(hours=1), kind='milk', amount=1.0)
        early = Event(timestamp=T0, kind='wet')
        store.save(late)
        store.save(early)

        store.delete_last()

        assert store.get_all() == [late]
        assert LogEventStore(path).get_all() == [late]


def test_delete_last_empty():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        try:
            store.delete_last()
            assert False, 'expected StoreEmpty'
        except StoreEmpty:
            pass

        store.save(_events(1)[0])
        store.delete_last()
        try:
            store.delete_last()
            assert False, 'expected StoreEmpty'
        except EventNotFound:
            pass


def test_update_first_match_across_zones():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path)
        first = Event(timestamp=T0, kind='wet')
        duplicate = Event(timestamp=T0, kind='bm')
        store.save(first)
        store.save(duplicate)

        replacement = Event(timestamp=T0 + timedelta(minutes=5), kind='milk', amount=2.0)
        store.update(T0.astimezone(CET), replacement)

        assert store.get_all() == [replacement, duplicate]
        assert LogEventStore(path).get_all() == [replacement, duplicate]


def test_update_not_found():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        store.save(_events(1)[0])
        try:
            store.update(T0 - timedelta(days=1), Event(timestamp=T0, kind='bm'))
            assert False, 'expected EventNotFound'
        except EventNotFound:
            pass
        assert store.get_all() == _events(1)


@mock.patch.object(AtomicFile, 'write')
def test_failed_rewrite_keeps_state(m_write):
    m_write.side_effect = OSError('disk full')
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path)
        events = _events(3)
        for event in events:
            store.save(event)

        for operation in (lambda: store.delete_last(),
                          lambda: store.delete_batch([events[0].timestamp]),
                          lambda: store.update(events[1].timestamp, Event(timestamp=T0, kind='bm'))):
            try:
                operation()
                assert False, 'expected EventWriteException'
            except EventWriteException:
                pass
            assert store.get_all() == events

        assert LogEventStore(path).get_all() == events


def test_failed_append_keeps_state():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'missing', 'baby.log'))
        try:
            store.save(_events(1)[0])
            assert False, 'expected EventWriteException'
        except EventWriteException:
            pass
        assert store.get_all() == []


def test_rotation_threshold():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        events = _events(3)
        store = LogEventStore(path, max_size=1)

        store.save(events[0])
        assert list_backups(path) == []

        store.save(events[1])

        backups = list_backups(path)
        assert len(backups) == 1
        assert len(_lines(backups[0])) == 1
        assert _lines(path) == [store.serializer.serialize(events[1])]
        # rotation clears the live view
        assert store.get_all() == [events[1]]


def test_no_rotation_below_threshold():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path, max_size=1024 * 1024)
        for event in _events(10):
            store.save(event)
        assert list_backups(path) == []
        assert len(store.get_all()) == 10


def test_backup_pruning_keeps_most_recent():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        times = [datetime(2026, 1, 23, 12, 0, second) for second in range(10)]
        store = LogEventStore(path, max_size=1, max_backups=2)

        with mock.patch.object(LogEventStore, '_now', side_effect=times):
            for event in _events(6):
                store.save(event)

        # five rotations, two retained
        assert list_backups(path) == [path + '.2026-01-23T12-00-03',
                                      path + '.2026-01-23T12-00-04']
        assert len(store.get_all()) == 1


def test_backup_pruning_same_second():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path, max_size=1, max_backups=3)
        when = datetime(2026, 1, 23, 12, 0, 0)

        with mock.patch.object(LogEventStore, '_now', return_value=when):
            for event in _events(6):
                store.save(event)

        backups = list_backups(path)
        assert [os.path.basename(b) for b in backups] == ['baby.log.2026-01-23T12-00-00.002',
                                                          'baby.log.2026-01-23T12-00-00.003',
                                                          'baby.log.2026-01-23T12-00-00.004']


@mock.patch.object(babylog.logstore.os, 'rename')
def test_rotation_failure_aborts_save(m_rename):
    m_rename.side_effect = OSError('read-only')
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path, max_size=1)
        events = _events(2)
        store.save(events[0])

        try:
            store.save(events[1])
            assert False, 'expected RotationException'
        except RotationException as e:
            assert isinstance(e.__cause__, OSError)

        assert store.get_all() == [events[0]]
        assert len(_lines(path)) == 1


@mock.patch.object(babylog.logstore, 'prune_backups')
def test_prune_failure_does_not_fail_save(m_prune):
    m_prune.side_effect = OSError('permission denied')
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path, max_size=1, max_backups=1)
        events = _events(2)
        store.save(events[0])
        store.save(events[1])

        assert m_prune.call_count == 1
        assert store.get_all() == [events[1]]
        assert len(list_backups(path)) == 1


def test_concurrent_saves():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, 'baby.log')
        store = LogEventStore(path)
        events = [Event(timestamp=T0 + timedelta(seconds=i), kind='milk', amount=float(i))
                  for i in range(64)]
        threads = [Thread(target=store.save, args=(event,)) for event in events]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        saved = store.get_all()
        assert len(saved) == 64
        assert sorted(saved, key=lambda e: e.timestamp) == events

        reloaded = LogEventStore(path)
        assert reloaded.skipped_lines == 0
        assert reloaded.get_all() == saved


def test_closed_store_rejects_writes():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LogEventStore(os.path.join(tmpdir, 'baby.log'))
        store.close()
        try:
            store.save(_events(1)[0])
            assert False, 'expected EventStoreException'
        except EventStoreException:
            pass
