"""
------------------
babylog.cli.parser
------------------


babylog CLI main :mod:`argparse` parser.
"""
import argparse


def get_parent_parser(name, desc=''):
    """Creates the main (parent) :class:`argparse.ArgumentParser` for babylog CLI.

    Defines the main argument options such as server host, port, verbosity
    level etc. Host and port default to ``None`` so that the configuration file
    and the built-in defaults apply when they are not given.

    :param str name: the name of the program.
    :param str desc: program description.

    Returns the configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(prog=name, description=desc)

    parser.add_argument('-v', '--version',
                        help='Print program version and exit', action='store_true')
    parser.add_argument('-H', '--host', help='Hostname to bind to (default 0.0.0.0)',
                        default=None, dest='server_host')
    parser.add_argument('-P', '--port', help='Listen on port (default 4011). '
                        'The PORT environment variable overrides it.', default=None,
                        type=int)

    parser.add_argument('--verbose', dest='verbose', action='store_true',
                        help='Verbose output.')

    return parser
