#!/usr/bin/env python3
"""
Filter an hprof CPU samples report down to the traces that matter.

Usage:
  python3 hprof_filter.py <report> [result] [index]

Example:
  python3 hprof_filter.py java.hprof.txt java.hprof.filtered.txt 2

The header is copied as is. Traces whose top frame is runtime I/O or
Unsafe plumbing (or that have no frames at all) are dropped, and the
remaining samples are re-ranked against what is left. When a report holds
several dumps, index selects which one (0-based) is kept.
"""
import argparse
import logging
import os
import sys
from typing import List, Optional

from hprof_archive import open_archived_report
from hprof_cursor import LineCursor
from hprof_errors import ReportFormatError
from hprof_samples import SAMPLES_BEGIN, SAMPLES_END, EmitSummary, Sample, emit_samples, read_samples
from hprof_trace import EXCLUDED_PREFIXES, THREAD_PREFIX, TRACE_PREFIX, TraceTable, add_trace, parse_trace_line

logger = logging.getLogger(__name__)

HEADER_RULE = "-----"


def read_header(cursor: LineCursor, writer):
    # Copy through the ----- rule plus the line after it
    passed_header = False
    for line in cursor:
        writer.write(line + "\n")
        if line.startswith(HEADER_RULE):
            passed_header = True
        elif passed_header:
            break


def read_traces(cursor: LineCursor, traces: TraceTable):
    """
    Collect trace definitions up to, but not including, CPU SAMPLES BEGIN.
    """
    trace = None
    while True:
        line = cursor.peek_line()
        if line is None or line.startswith(SAMPLES_BEGIN):
            break
        cursor.next_line()

        if line.startswith(THREAD_PREFIX):
            continue
        elif line.startswith(TRACE_PREFIX):
            trace = add_trace(traces, parse_trace_line(line, cursor.line_number))
        elif not line.strip():
            continue
        elif trace is None:
            logger.debug("Ignoring line %d outside of any trace: %s", cursor.line_number, line)
        else:
            trace.add_stack_line(line)


def read_and_discard_block(cursor: LineCursor, traces: TraceTable):
    """
    Consume one whole section up to and including CPU SAMPLES END. Trace
    definitions are still recorded since later sections refer back to them.
    """
    trace = None
    for line in cursor:
        if line.startswith(SAMPLES_END):
            break
        elif line.startswith(TRACE_PREFIX):
            trace = add_trace(traces, parse_trace_line(line, cursor.line_number))
        elif line.startswith(SAMPLES_BEGIN) or line.startswith(THREAD_PREFIX):
            trace = None
        elif trace is not None and line.strip():
            trace.add_stack_line(line)


def filter_report(reader, writer, index: int = 0, excluded_prefixes=EXCLUDED_PREFIXES,
                  log: Optional[logging.Logger] = None) -> EmitSummary:
    """
    Filter the report read from reader into writer. Both streams stay open;
    the caller owns them.
    """
    log = log or logger
    cursor = LineCursor(reader)
    read_header(cursor, writer)

    # Traces are reused across sections; collect them all
    traces: TraceTable = {}
    for i in range(index):
        log.info("Skipping section %d", i)
        read_and_discard_block(cursor, traces)

    read_traces(cursor, traces)

    samples: List[Sample] = []
    date = read_samples(cursor, samples)

    return emit_samples(writer, samples, traces, date, excluded_prefixes, log)


def default_result_path(report) -> str:
    # profile.hprof.txt -> profile.hprof.filtered.txt
    report = os.path.normpath(os.path.abspath(os.fspath(report)))
    directory, name = os.path.split(report)
    stem, ext = os.path.splitext(name)
    return os.path.join(directory, f"{stem}.filtered{ext}")


def filter_file(report, result=None, index: int = 0, excluded_prefixes=EXCLUDED_PREFIXES,
                log: Optional[logging.Logger] = None, from_tar: bool = False) -> EmitSummary:
    log = log or logger
    result = result if result is not None else default_result_path(report)

    log.info("Report file %s", report)
    log.info("Result file is %s", result)

    if from_tar:
        with open(report, "rb") as archive, open_archived_report(archive) as reader, \
                open(result, "w", encoding="utf-8") as writer:
            return filter_report(reader, writer, index, excluded_prefixes, log)

    # Input is opened first so a missing report never leaves an empty result behind
    with open(report, "r", encoding="utf-8") as reader, open(result, "w", encoding="utf-8") as writer:
        return filter_report(reader, writer, index, excluded_prefixes, log)


def non_negative_int(value: str) -> int:
    index = int(value)
    if index < 0:
        raise argparse.ArgumentTypeError(f"index must be >= 0, got {index}")
    return index


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Filter and re-rank an hprof CPU samples report.")
    ap.add_argument("report", help="hprof text report (cpu=samples)")
    ap.add_argument("result", nargs="?", default=None,
                    help="Filtered output (default: <report>.filtered<ext> next to the report)")
    ap.add_argument("index", nargs="?", type=non_negative_int, default=0,
                    help="0-based section to keep when the report holds several dumps (default: 0)")
    ap.add_argument("--exclude-prefix", dest="excluded_prefixes", action="append", default=None,
                    metavar="PREFIX",
                    help=f"Drop traces whose top frame starts with PREFIX; repeatable "
                         f"(default: {', '.join(EXCLUDED_PREFIXES)})")
    ap.add_argument("--from-tar", action="store_true",
                    help="The report is a tar archive whose first entry is the hprof text")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    excluded = tuple(args.excluded_prefixes) if args.excluded_prefixes else EXCLUDED_PREFIXES
    try:
        summary = filter_file(args.report, args.result, args.index, excluded, from_tar=args.from_tar)
    except (OSError, ReportFormatError) as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1

    print(f"Kept {summary.samples} samples over {summary.traces} traces (total = {summary.total})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
