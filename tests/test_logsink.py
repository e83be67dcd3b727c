import io

from preflightcheck.logsink import DBG, TRC, BufferSink


def test_info_writes_message_and_values():
    sink = BufferSink()
    sink.info("check completed", "result", "PASSED")
    assert sink.getvalue() == " check completed [result PASSED]\n"


def test_error_includes_error_text():
    sink = BufferSink()
    sink.error(ValueError("boom"), "failed", "k", 1)
    assert "boom failed [k 1]" in sink.getvalue()


def test_with_name_shares_buffer():
    sink = BufferSink()
    named = sink.with_name("engine")
    named.info("hello")
    assert sink.getvalue().startswith("engine hello")
    assert named.getvalue() == sink.getvalue()
    assert named.name == "engine"
    assert sink.name == ""


def test_every_level_is_enabled():
    sink = BufferSink()
    assert all(sink.enabled(level) for level in (0, DBG, TRC, 10))


def test_external_buffer_is_used():
    buf = io.StringIO()
    BufferSink(buf).info("Results are not being sent for submission.")
    assert "Results are not being sent for submission." in buf.getvalue()


def test_records_accumulate_one_line_each():
    sink = BufferSink()
    sink.info("one")
    sink.info("two", "a", "b")
    sink.error(RuntimeError("bad"), "three")
    lines = sink.getvalue().splitlines()
    assert len(lines) == 3
    assert "one" in lines[0] and "two" in lines[1] and "three" in lines[2]