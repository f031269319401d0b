"""
--------------
babylog.config
--------------

Server configuration.

The settings are resolved from, in order of increasing precedence:

1. the built-in defaults (:data:`DEFAULTS`),
2. an optional YAML configuration file,
3. the command line arguments,
4. the ``PORT`` environment variable (for the port only).

A configuration file is a YAML mapping of setting names to values:

.. code-block:: yaml

    file: /var/lib/babylog/baby.log
    max_size: 10      # megabytes, 0 = unlimited
    max_backups: 5    # 0 = keep all backups
    host: 0.0.0.0
    port: 4011
    public_dir: ./public

"""
from collections import namedtuple
from logging import getLogger

import yaml


log = getLogger(__name__)


Settings = namedtuple('Settings', ['file', 'max_size', 'max_backups', 'host', 'port', 'public_dir'])
"""Resolved server settings. ``max_size`` is in megabytes."""

DEFAULTS = Settings(file='baby.log',
                    max_size=10,
                    max_backups=5,
                    host='0.0.0.0',
                    port=4011,
                    public_dir='public')

_TYPES = {
    'file': str,
    'max_size': int,
    'max_backups': int,
    'host': str,
    'port': int,
    'public_dir': str,
}

PORT_ENV = 'PORT'


class ConfigException(Exception):
    """Invalid configuration.
    """
    pass


def _check(name, value):
    expected = _TYPES.get(name)
    if expected is None:
        raise ConfigException('unknown setting %s' % name)
    if isinstance(value, bool) or not isinstance(value, expected):
        raise ConfigException('invalid value for setting %s: %r' % (name, value))
    if expected is int and value < 0:
        raise ConfigException('setting %s must not be negative' % name)
    return value


def load_config(path):
    """Loads the settings from a YAML configuration file.

    :param path: ``str``, path to the configuration file.

    Returns a ``dict`` with the settings found in the file. Raises
    :class:`ConfigException` if the file cannot be read, is not a YAML mapping
    or contains unknown settings or values of the wrong type.
    """
    try:
        with open(path) as config_file:
            data = yaml.safe_load(config_file)
    except OSError as e:
        raise ConfigException('cannot read config file %s: %s' % (path, e)) from e
    except yaml.YAMLError as e:
        raise ConfigException('invalid config file %s: %s' % (path, e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigException('config file %s must contain a mapping' % path)

    return {name: _check(name, value) for name, value in data.items()}


def resolve_settings(args, environ):
    """Resolves the settings from the defaults, config file, arguments and environment.

    :param args: ``dict``, settings given on the command line. ``None`` values are
        treated as not given. The ``config`` key, if present, is the path to the
        YAML configuration file.
    :param environ: the environment mapping, usually :data:`os.environ`.

    Returns the resolved :class:`Settings`.
    """
    values = DEFAULTS._asdict()

    config_path = args.get('config')
    if config_path:
        values.update(load_config(config_path))
        log.debug('Loaded config from %s', config_path)

    for name in Settings._fields:
        if args.get(name) is not None:
            values[name] = _check(name, args[name])

    port = environ.get(PORT_ENV)
    if port:
        try:
            values['port'] = _check('port', int(port))
        except ValueError as e:
            raise ConfigException('invalid %s environment variable: %r' % (PORT_ENV, port)) from e

    return Settings(**values)
