"""Main CLI entry point for ecrdump."""

import argparse
import json
import sys
import logging
from typing import Dict, Any

from .config.settings import Config
from .errors import FatalError
from .models.filter import FilterSpec
from .operations.dump import DumpOperation
from .storage.jsonl_writer import open_sink
from .utils.logger import setup_logging
from .utils.progress import ProgressReporter


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def print_json_output(data: Dict[str, Any]):
    """Print formatted JSON output to stderr, stdout may hold the dump."""
    print(json.dumps(data, indent=2), file=sys.stderr)


def handle_dump(args) -> int:
    """Handle the dump, returning the process exit code."""
    try:
        config = Config({
            'concurrency': args.concurrency,
            'page_size': args.page_size,
            'max_attempts': args.max_attempts,
            'include': args.include,
            'exclude': args.exclude,
            'region': args.region,
            'profile_name': args.profile,
            'registry_id': args.registry_id,
        })
        spec = FilterSpec.from_lists(config.include, config.exclude)

        sink = open_sink(args.output)
        try:
            with ProgressReporter(disabled=args.no_progress) as progress:
                with DumpOperation(config, progress=progress) as dump_op:
                    summary = dump_op.dump(spec, sink)
        finally:
            if sink is not sys.stdout:
                sink.close()

    except (FatalError, ValueError, FileNotFoundError) as e:
        logger.error(f"Dump failed: {e}")
        print_json_output({
            "Operation": "Dump",
            "Status": "Failed",
            "Error": str(e)
        })
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("Dump interrupted before it could finish")
        print_json_output({
            "Operation": "Dump",
            "Status": "Cancelled"
        })
        return EXIT_INTERRUPTED

    output = {"Operation": "Dump", "Output": args.output}
    output.update(summary.to_dict())
    print_json_output(output)

    if summary.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ecrdump',
        description='Dumps every image and manifest in an ECR registry as JSON lines.'
    )

    parser.add_argument('output', help="Output file, or '-' for stdout")
    parser.add_argument(
        '-c', '--concurrency',
        type=int,
        help='Maximum number of concurrent registry requests (default: 10)'
    )
    parser.add_argument(
        '--include',
        action='append',
        metavar='GLOB',
        help='Only dump repositories matching this glob (repeatable)'
    )
    parser.add_argument(
        '--exclude',
        action='append',
        metavar='GLOB',
        help='Skip repositories matching this glob (repeatable, wins over --include)'
    )
    parser.add_argument(
        '--page-size',
        type=int,
        help='Results requested per listing page, at most 1000 (default: 1000)'
    )
    parser.add_argument(
        '--max-attempts',
        type=int,
        help='Attempts per registry request before giving up (default: 5)'
    )
    parser.add_argument('--region', help='AWS region of the registry')
    parser.add_argument('--profile', help='AWS profile to use')
    parser.add_argument('--registry-id', help='Account ID of the registry (default: caller account)')
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Set logging level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Log to file in addition to console'
    )
    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.log_level, args.log_file)

    sys.exit(handle_dump(args))


if __name__ == '__main__':
    main()
