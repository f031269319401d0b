"""
--------------------
babylog.cli.__main__
--------------------

Entry point of the babylog CLI: ``python -m babylog.cli``.
"""
import logging
import sys

from babylog.cli.parser import get_parent_parser
from babylog.cli.serve import get_parser as get_serve_parser, run_server
from babylog.config import ConfigException


def main(argv=None):
    parser = get_parent_parser('babylog', 'babylog activity log server')

    subparsers = parser.add_subparsers(dest='command', title='command', help='CLI commands')
    get_serve_parser(subparsers)

    args = parser.parse_args(argv)

    if args.version:
        from babylog.metadata import version
        print('babylog', version)
        sys.exit(0)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    if args.command == 'serve':
        try:
            run_server(args)
        except ConfigException as e:
            parser.error(str(e))
    else:
        parser.print_help()


if __name__ == '__main__':
    main()
