import io
import tarfile
from contextlib import contextmanager

from hprof_errors import ReportIOError


@contextmanager
def open_archived_report(archive, encoding: str = "utf-8"):
    """
    Yield a text stream over the first entry of a tar stream, which is how a
    report copied out of a container filesystem arrives.

    archive: readable binary stream (need not be seekable)
    """
    try:
        tar = tarfile.open(fileobj=archive, mode="r|*")
    except tarfile.TarError as e:
        raise ReportIOError(f"Unsupported archive: {e}") from e

    with tar:
        member = tar.next()
        if member is None or not member.isfile():
            raise ReportIOError("Archive does not start with a regular file")
        # Stream-mode members are not seekable, so decode the entry up front
        with io.StringIO(tar.extractfile(member).read().decode(encoding)) as reader:
            yield reader
