from collections import deque

from hprof_errors import ReportIOError

# Enough buffered lookahead to span one full section
READ_AHEAD_LIMIT = 256 * 1024


def _strip_terminator(raw: str) -> str:
    if raw.endswith("\n"):
        raw = raw[:-1]
    if raw.endswith("\r"):
        raw = raw[:-1]
    return raw


class LineCursor:
    """
    Line-oriented cursor over a text stream.

    next_line() consumes, peek_line() looks one line ahead, and mark()/rewind()
    replay everything consumed since the mark. The mark is dropped once more
    than read_ahead_limit characters have been consumed past it.
    """

    def __init__(self, stream, read_ahead_limit: int = READ_AHEAD_LIMIT):
        self._stream = stream
        self._read_ahead_limit = read_ahead_limit
        self._replay = deque()
        self._marked = None
        self._marked_size = 0
        self.line_number = 0

    def next_line(self):
        """Returns the next line without its terminator, or None at end of stream."""
        if self._replay:
            line = self._replay.popleft()
        else:
            raw = self._stream.readline()
            if not raw:
                return None
            line = _strip_terminator(raw)

        self.line_number += 1
        if self._marked is not None:
            self._marked.append(line)
            self._marked_size += len(line) + 1
            if self._marked_size > self._read_ahead_limit:
                self._marked = None
        return line

    def mark(self):
        self._marked = []
        self._marked_size = 0

    def rewind(self):
        if self._marked is None:
            raise ReportIOError("Mark invalid; read-ahead limit exceeded or never set")
        self._replay.extendleft(reversed(self._marked))
        self.line_number -= len(self._marked)
        self._marked = None
        self._marked_size = 0

    def peek_line(self):
        """Returns the next line without consuming it; independent of mark()."""
        if not self._replay:
            raw = self._stream.readline()
            if not raw:
                return None
            self._replay.append(_strip_terminator(raw))
        return self._replay[0]

    def __iter__(self):
        while True:
            line = self.next_line()
            if line is None:
                return
            yield line
