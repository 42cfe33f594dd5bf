class ReportFormatError(ValueError):
    """
    Raised when a report line does not match the hprof CPU samples grammar.
    Carries the offending line (and its 1-based number when known).
    """

    def __init__(self, message, line=None, line_number=None):
        if line_number is not None:
            message = f"{message} (line {line_number})"
        if line is not None:
            message = f"{message}: {line}"
        super().__init__(message)
        self.line = line
        self.line_number = line_number


class MalformedTraceError(ReportFormatError):
    pass


class MalformedSampleError(ReportFormatError):
    pass


class MalformedHeaderError(ReportFormatError):
    pass


class ReportIOError(OSError):
    pass
