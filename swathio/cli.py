#!/usr/bin/env python3
"""
Command line inspection of swath logs.

Prints one line per record (or per ping) and a record count summary.
"""

import argparse
import sys

from .config import SessionConfig, configure_logging, load_config
from .drivers import DRIVERS
from .reader import open_log
from .records import DIAGNOSTIC_TYPES, Ping, SensorRecord


def describe(record) -> str:
    """One-line description of a record."""
    if isinstance(record, Ping):
        status = 'ok' if record.valid else f"INVALID ({record.error})"
        text = (f"ping {record.ping_number:6d} dev {record.device_number} "
                f"t={record.time:.3f} beams={record.num_beams} {status}")
        soundings = record.soundings()
        if record.valid and soundings is not None and len(soundings):
            good = soundings.good
            if good.any():
                text += (f" depth {soundings.depth[good].min():.2f}.."
                         f"{soundings.depth[good].max():.2f} m")
        return text
    if isinstance(record, SensorRecord):
        return (f"{record.kind.value:14s} dev {record.device_number} t={record.time:.3f} "
                f"{len(record.samples)} sample(s) last={record.value}")
    if isinstance(record, DIAGNOSTIC_TYPES):
        return f"!! {record.KIND}: {record}"
    return f"{record.KIND:14s} {getattr(record, 'tag', '')}"


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Inspect a multibeam sonar log',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s survey.hsx
  %(prog)s 0001_20040101_000000.all --pings
  %(prog)s raw.dat --format simrad --params config/swathio_params.yaml
        '''
    )
    parser.add_argument('log_file', help='Path to the log file')
    parser.add_argument('--format', choices=sorted(DRIVERS),
                        help='Log format (default: guessed from the extension)')
    parser.add_argument('--params', help='YAML parameter file')
    parser.add_argument('--pings', action='store_true',
                        help='Only list valid pings')
    parser.add_argument('--limit', type=int, default=0,
                        help='Stop after this many lines (default: no limit)')

    args = parser.parse_args(argv)
    config = load_config(args.params) if args.params else SessionConfig()
    configure_logging(config)

    try:
        with open_log(args.log_file, args.format, config) as reader:
            records = reader.pings() if args.pings else iter(reader)
            for count, record in enumerate(records, 1):
                print(describe(record))
                if args.limit and count >= args.limit:
                    break
            print()
            print(reader.summary())
            if reader.diagnostics:
                print(f"{len(reader.diagnostics)} diagnostic record(s)")
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
