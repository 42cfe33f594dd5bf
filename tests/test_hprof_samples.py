import io

import pytest

from hprof_cursor import LineCursor
from hprof_errors import MalformedHeaderError, MalformedSampleError
from hprof_samples import (
    Sample,
    emit_samples,
    format_percent,
    format_sample_row,
    parse_sample_line,
    parse_samples_begin,
    rank_samples,
    read_samples,
    split_sample_fields,
)
from hprof_trace import Trace


def make_traces(**frames):
    # make_traces(t1="app.Foo") -> {1: Trace(1, ["app.Foo"])}
    traces = {}
    for key, frame in frames.items():
        trace = Trace(int(key[1:]))
        if frame:
            trace.add_stack_line(frame)
        traces[trace.id] = trace
    return traces


def test_split_keeps_spaces_in_method():
    line = "   1 40.00% 40.00%      40 300001 Foo.bar (compiled method)"
    assert split_sample_fields(line) == ["1", "40.00%", "40.00%", "40", "300001", "Foo.bar (compiled method)"]


def test_split_short_line():
    assert split_sample_fields("   1 40.00% 40.00%      40 300001") == ["1", "40.00%", "40.00%", "40", "300001"]
    assert split_sample_fields("   ") == []


def test_parse_sample_line():
    assert parse_sample_line("   2 25.00% 65.00%      25 300002 com.example.Codec.encode") == \
        Sample(25, 300002, "com.example.Codec.encode")


@pytest.mark.parametrize("line", [
    "   1 100.00% 100.00%      25 300002",
    "   1 100.00% 100.00%      x 300002 Foo.bar",
])
def test_parse_sample_line_malformed(line):
    with pytest.raises(MalformedSampleError):
        parse_sample_line(line)


def test_parse_samples_begin():
    total, date = parse_samples_begin("CPU SAMPLES BEGIN (total = 1234) Tue Mar 10 12:00:05 2015")
    assert total == 1234
    assert date == "Tue Mar 10 12:00:05 2015"


@pytest.mark.parametrize("line", ["CPU SAMPLES BEGIN", "CPU SAMPLES BEGIN (total = lots) now"])
def test_parse_samples_begin_malformed(line):
    with pytest.raises(MalformedHeaderError):
        parse_samples_begin(line)


def test_read_samples():
    report = io.StringIO(
        "CPU SAMPLES BEGIN (total = 8) Tue Mar 10 12:00:05 2015\n"
        "rank   self  accum   count trace method\n"
        "THREAD END (id = 200001)\n"
        "   1 62.50% 62.50%       5 1 app.Foo\n"
        "   2 37.50% 100.00%       3 2 sun.nio.ch.Bar\n"
        "CPU SAMPLES END\n"
        "   1 100.00% 100.00%       9 3 never.Read\n"
    )
    samples = []
    date = read_samples(LineCursor(report), samples)
    assert date == "Tue Mar 10 12:00:05 2015"
    assert samples == [Sample(5, 1, "app.Foo"), Sample(3, 2, "sun.nio.ch.Bar")]


def test_read_samples_truncated():
    samples = []
    date = read_samples(LineCursor(io.StringIO("CPU SAMPLES BEGIN (total = 8) today\n   1 62.50% 62.50%       5 1 app.Foo\n")), samples)
    assert date == "today"
    assert samples == [Sample(5, 1, "app.Foo")]


def test_format_percent_rounds_half_up():
    assert format_percent(0.125) == " 0.13%"
    assert format_percent(1.005) == " 1.01%"
    assert format_percent(0.0) == " 0.00%"
    assert format_percent(100.0) == "100.00%"
    assert format_percent(99.99999999999999) == "100.00%"


def test_format_sample_row():
    assert format_sample_row(1, 100.0, 100.0, 5, 1, "app.Foo") == "   1 100.00% 100.00%       5     1 app.Foo"
    assert format_sample_row(12, 8.0, 88.0, 8, 300004, "a b") == "  12  8.00% 88.00%       8 300004 a b"


def test_rank_samples_filters_and_sorts():
    traces = make_traces(t1="app.Foo", t2="sun.nio.ch.Bar", t3="app.Baz", t4=None)
    samples = [
        Sample(1, 1, "app.Foo"),
        Sample(3, 2, "sun.nio.ch.Bar"),
        Sample(2, 3, "app.Baz"),
        Sample(9, 4, "empty"),
        Sample(7, 99, "unknown"),
    ]
    ranked = rank_samples(samples, traces)
    assert ranked["rank"].tolist() == [1, 2]
    assert ranked["trace"].tolist() == [3, 1]
    assert ranked["count"].sum() == 3
    assert ranked["accum_pct"].iloc[-1] == pytest.approx(100.0)


def test_rank_samples_ties_keep_file_order():
    traces = make_traces(t1="a.A", t2="b.B", t3="c.C")
    samples = [Sample(2, 1, "a"), Sample(5, 2, "b"), Sample(2, 3, "c"), Sample(2, 1, "a2")]
    ranked = rank_samples(samples, traces)
    assert ranked["method"].tolist() == ["b", "a", "c", "a2"]


def test_rank_samples_zero_total():
    traces = make_traces(t1="a.A")
    ranked = rank_samples([Sample(0, 1, "a"), Sample(0, 1, "b")], traces)
    assert ranked["self_pct"].tolist() == [0.0, 0.0]
    assert ranked["accum_pct"].tolist() == [0.0, 0.0]


def test_emit_reference():
    traces = make_traces(t1="app.Foo", t2="sun.nio.ch.Bar")
    out = io.StringIO()
    summary = emit_samples(out, [Sample(5, 1, "app.Foo"), Sample(3, 2, "sun.nio.ch.Bar")], traces, "today")
    assert out.getvalue() == (
        "TRACE 1:\n"
        "app.Foo\n"
        "CPU SAMPLES BEGIN (total = 5) today\n"
        "rank   self  accum   count trace method\n"
        "   1 100.00% 100.00%       5     1 app.Foo\n"
        "CPU SAMPLES END\n"
    )
    assert (summary.samples, summary.traces, summary.total) == (1, 1, 5)


def test_emit_traces_in_discovery_order():
    traces = make_traces(t9="z.Z", t2="a.A")
    out = io.StringIO()
    emit_samples(out, [Sample(1, 2, "a"), Sample(4, 9, "z")], traces, "today")
    lines = out.getvalue().splitlines()
    assert lines[:4] == ["TRACE 9:", "z.Z", "TRACE 2:", "a.A"]


def test_emit_nothing_without_samples():
    out = io.StringIO()
    summary = emit_samples(out, [], make_traces(t1="app.Foo"), "today")
    assert out.getvalue() == ""
    assert summary.samples == 0


def test_emit_all_filtered():
    out = io.StringIO()
    summary = emit_samples(out, [Sample(3, 2, "bar")], make_traces(t2="sun.misc.Unsafe.park"), "today")
    assert out.getvalue() == (
        "CPU SAMPLES BEGIN (total = 0) today\n"
        "rank   self  accum   count trace method\n"
        "CPU SAMPLES END\n"
    )
    assert summary.total == 0
