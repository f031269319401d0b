"""
-----------------
babylog.cli.serve
-----------------

babylog server command line interface script.
"""
import os
import signal
from logging import getLogger

from babylog.collector import Collector
from babylog.config import resolve_settings
from babylog.logstore import LogEventStore


log = getLogger(__name__)


MEGABYTE = 1024 * 1024


def get_parser(subparsers):
    """Configures the subparser for the ``serve`` command.

    :param argparse.ArgumentParser subparser: subparser for commands.

    Returns :class:`argparse.ArgumentParser` configured for the ``serve`` command.
    """
    parser = subparsers.add_parser('serve', help='Activity log server')

    parser.add_argument('-f', '--file', dest='file', help='Path to the log file (default baby.log)')
    parser.add_argument('--max-size', dest='max_size', type=int,
                        help='Rotate the log file when it reaches this size in MB, 0 for unlimited (default 10)')
    parser.add_argument('--max-backups', dest='max_backups', type=int,
                        help='Number of rotated log files to keep, 0 to keep all (default 5)')
    parser.add_argument('--public-dir', dest='public_dir',
                        help='Directory with the static web client files (default public)')
    parser.add_argument('-c', '--config', dest='config', help='YAML configuration file')

    return parser


def get_settings(args, environ=None):
    """Resolves the server settings from the parsed arguments and the environment.

    :param argparse.Namespace args: the parsed arguments.
    :param environ: the environment mapping. Defaults to :data:`os.environ`.
    """
    return resolve_settings({
        'config': getattr(args, 'config', None),
        'file': getattr(args, 'file', None),
        'max_size': getattr(args, 'max_size', None),
        'max_backups': getattr(args, 'max_backups', None),
        'host': getattr(args, 'server_host', None),
        'port': getattr(args, 'port', None),
        'public_dir': getattr(args, 'public_dir', None),
    }, os.environ if environ is None else environ)


def get_store(settings):
    """Creates and configures new :class:`babylog.logstore.LogEventStore`
    based on the settings.

    :param babylog.config.Settings settings: resolved settings.

    """
    return LogEventStore(file_path=settings.file,
                         max_size=settings.max_size * MEGABYTE,
                         max_backups=settings.max_backups)


def run_server(args):
    """Runs the activity log server.

    :param argparse.Namespace args: arguments to configure the
        :class:`babylog.collector.Collector` instance.

    """
    settings = get_settings(args)
    store = get_store(settings)
    log.info('Using log file %s (max size %dMB, %d backups)',
             store.file_path, settings.max_size, settings.max_backups)

    collector = Collector(store=store, hostname=settings.host, port=settings.port,
                          public_dir=settings.public_dir)

    def stop_collector(sig, frame):
        """Signal handler that stops the collector.
        """
        log.info('Server is shutting down.')
        collector.stop()

    signal.signal(signal.SIGHUP, stop_collector)
    signal.signal(signal.SIGINT, stop_collector)
    signal.signal(signal.SIGTERM, stop_collector)

    collector.run()
