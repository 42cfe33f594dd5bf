from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from hprof_errors import MalformedTraceError

TRACE_PREFIX = "TRACE"
THREAD_PREFIX = "THREAD"

# Top-of-stack frames from runtime I/O and memory internals say nothing about the code under test
EXCLUDED_PREFIXES: Tuple[str, ...] = ("sun.nio", "sun.misc.Unsafe")


@dataclass
class Trace:
    id: int
    stack_lines: List[str] = field(default_factory=list)

    def add_stack_line(self, line: str) -> "Trace":
        self.stack_lines.append(line)
        return self

    def should_filter(self, excluded_prefixes=EXCLUDED_PREFIXES) -> bool:
        """
        True if the trace has no frames or its top frame (stripped) starts
        with one of excluded_prefixes.
        """
        if not self.stack_lines:
            return True
        if isinstance(excluded_prefixes, str):
            excluded_prefixes = (excluded_prefixes,)
        top_line = self.stack_lines[0].strip()
        return top_line.startswith(tuple(excluded_prefixes))

    def emit(self, writer):
        writer.write(f"TRACE {self.id}:\n")
        for stack_line in self.stack_lines:
            writer.write(stack_line + "\n")


TraceTable = Dict[int, Trace]


def parse_trace_line(line: str, line_number=None) -> Trace:
    # e.g. 'TRACE 300123:'
    tokens = line.split()
    if len(tokens) < 2:
        raise MalformedTraceError("Trace line does not appear to be valid", line, line_number)
    try:
        trace_id = int(tokens[1].replace(":", ""))
    except ValueError:
        raise MalformedTraceError("Trace line does not appear to be valid", line, line_number) from None
    return Trace(trace_id)


def add_trace(traces: TraceTable, trace: Trace) -> Trace:
    # ids are unique per section; a later definition wins
    traces[trace.id] = trace
    return trace
