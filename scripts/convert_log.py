#!/usr/bin/env python3
"""
Convert a swath log from one format to another.

Records the output format cannot carry are skipped by its driver;
diagnostic records are reported and not written.
"""

import argparse
import sys

from swathio import SessionConfig, configure_logging, load_config, open_log
from swathio.drivers import DRIVERS, guess_format, open_driver
from swathio.records import DIAGNOSTIC_TYPES, HeaderRecord


def convert(input_path, output_path, input_format=None, output_format=None, config=None):
    """
    Copy every record of a log into a new file.

    Returns:
        (records written, diagnostics seen)
    """
    output_format = output_format or guess_format(output_path)
    written = 0
    diagnostics = 0
    with open_log(input_path, input_format, config) as reader, \
            open(output_path, 'wb') as out:
        with open_driver(output_format, out, 'w', config) as writer:
            for record in reader:
                if isinstance(record, DIAGNOSTIC_TYPES):
                    diagnostics += 1
                    print(f"Skipping {record.KIND}: {record}", file=sys.stderr)
                    continue
                # Time of day formats need the survey date before the first timed record
                if output_format == 'hysweep' and writer.session.epoch is None and \
                        not isinstance(record, HeaderRecord) and getattr(record, 'time', None):
                    writer.write_survey_date(record.time)
                writer.write(record)
                written += 1
    return written, diagnostics


def main():
    parser = argparse.ArgumentParser(description='Convert a multibeam sonar log')
    parser.add_argument('input', help='Input log file')
    parser.add_argument('output', help='Output log file')
    parser.add_argument('--from', dest='input_format', choices=sorted(DRIVERS),
                        help='Input format (default: from the extension)')
    parser.add_argument('--to', dest='output_format', choices=sorted(DRIVERS),
                        help='Output format (default: from the extension)')
    parser.add_argument('--params', help='YAML parameter file')

    args = parser.parse_args()
    config = load_config(args.params) if args.params else SessionConfig()
    configure_logging(config)

    written, diagnostics = convert(args.input, args.output, args.input_format,
                                   args.output_format, config)
    print(f"Wrote {written} records to {args.output} ({diagnostics} diagnostics skipped)")


if __name__ == '__main__':
    main()
