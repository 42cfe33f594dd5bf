import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List

import pandas as pd

from hprof_errors import MalformedHeaderError, MalformedSampleError
from hprof_trace import EXCLUDED_PREFIXES, THREAD_PREFIX, TraceTable

logger = logging.getLogger(__name__)

SAMPLES_BEGIN = "CPU SAMPLES BEGIN"
SAMPLES_END = "CPU SAMPLES END"
COLUMN_HEADER = "rank   self  accum   count trace method"
SAMPLE_FIELDS = 6

# len("(total = ")
_TOTAL_TOKEN_LEN = 9
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Sample:
    count: int
    trace: int
    method: str


@dataclass(frozen=True)
class EmitSummary:
    samples: int
    traces: int
    total: int


def split_sample_fields(line: str, limit: int = SAMPLE_FIELDS) -> List[str]:
    """
    Split on single spaces, trimming every piece and dropping empty ones.
    Once limit-1 fields are taken the rest of the line is the last field,
    so a method label keeps its embedded spaces.
    """
    fields = []
    rest = line.strip()
    while rest:
        if len(fields) == limit - 1:
            fields.append(rest)
            break
        head, _, rest = rest.partition(" ")
        head = head.strip()
        if head:
            fields.append(head)
        rest = rest.strip()
    return fields


def parse_sample_line(line: str, line_number=None) -> Sample:
    # rank self accum count trace method
    fields = split_sample_fields(line)
    if len(fields) != SAMPLE_FIELDS:
        raise MalformedSampleError("Samples entry does not appear to be valid", line, line_number)
    try:
        count = int(fields[3])
        trace = int(fields[4])
    except ValueError:
        raise MalformedSampleError("Samples entry does not appear to be valid", line, line_number) from None
    return Sample(count, trace, fields[5])


def parse_samples_begin(line: str, line_number=None):
    """
    'CPU SAMPLES BEGIN (total = 1234) Mon Jan  1 00:00:00 2024' -> (1234, 'Mon Jan  1 00:00:00 2024')
    """
    open_idx = line.find("(")
    close_idx = line.find(")")
    if open_idx < 0 or close_idx < open_idx:
        raise MalformedHeaderError("Samples header does not declare a total", line, line_number)
    try:
        total = int(line[open_idx + _TOTAL_TOKEN_LEN:close_idx])
    except ValueError:
        raise MalformedHeaderError("Samples header does not declare a total", line, line_number) from None
    date = line[close_idx + 2:]
    return total, date


def read_samples(cursor, samples: List[Sample]) -> str:
    """
    Collect sample rows up to CPU SAMPLES END (or end of stream) and return
    the date text of the CPU SAMPLES BEGIN line.
    """
    date = ""
    for line in cursor:
        if line.startswith(THREAD_PREFIX):
            continue
        elif line.startswith(SAMPLES_BEGIN):
            declared, date = parse_samples_begin(line, cursor.line_number)
            logger.debug("Section declares %d samples", declared)
        elif line.strip().startswith("rank"):
            continue
        elif line.startswith(SAMPLES_END):
            break
        elif not line.strip():
            continue
        else:
            samples.append(parse_sample_line(line, cursor.line_number))
    return date


def format_percent(value: float) -> str:
    # Half up on the shortest repr, so 0.125 -> 0.13 and 1.005 -> 1.01
    rounded = Decimal(repr(float(value))).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return "%5s%%" % rounded


def format_sample_row(rank, self_pct, accum_pct, count, trace, method) -> str:
    return "%4d %s %s %7d %5d %s" % (
        rank, format_percent(self_pct), format_percent(accum_pct), count, trace, method)


def rank_samples(samples: List[Sample], traces: TraceTable, excluded_prefixes=EXCLUDED_PREFIXES) -> pd.DataFrame:
    """
    Keep samples whose trace is known and not filtered, sort them by count
    (descending, ties in file order) and recompute the self/accum
    percentages over the retained total only.
    """
    df = pd.DataFrame(
        [(s.count, s.trace, s.method) for s in samples],
        columns=["count", "trace", "method"],
    ).astype({"count": "int64", "trace": "int64"})

    def keep(trace_id):
        trace = traces.get(trace_id)
        return trace is not None and not trace.should_filter(excluded_prefixes)

    df = df[df["trace"].map(keep).astype(bool)]
    df = df.sort_values("count", ascending=False, kind="stable").reset_index(drop=True)

    total = int(df["count"].sum())
    if total > 0:
        df["self_pct"] = df["count"] / total * 100
    else:
        df["self_pct"] = 0.0
    df["accum_pct"] = df["self_pct"].cumsum()
    df.insert(0, "rank", list(range(1, len(df) + 1)))
    return df[["rank", "self_pct", "accum_pct", "count", "trace", "method"]]


def emit_samples(writer, samples: List[Sample], traces: TraceTable, date: str,
                 excluded_prefixes=EXCLUDED_PREFIXES, log=None) -> EmitSummary:
    log = log or logger
    if not samples:
        return EmitSummary(0, 0, 0)

    ranked = rank_samples(samples, traces, excluded_prefixes)
    relevant = set(ranked["trace"].tolist())
    total = int(ranked["count"].sum())

    log.info("Emitting %d relevant traces", len(relevant))
    for trace_id, trace in traces.items():
        if trace_id in relevant and not trace.should_filter(excluded_prefixes):
            trace.emit(writer)

    log.info("Emitting %d filtered samples", len(ranked))
    writer.write(f"{SAMPLES_BEGIN} (total = {total}) {date}\n")
    writer.write(COLUMN_HEADER + "\n")
    for row in ranked.itertuples(index=False, name=None):
        writer.write(format_sample_row(*row) + "\n")
    writer.write(SAMPLES_END + "\n")

    return EmitSummary(len(ranked), len(relevant), total)
