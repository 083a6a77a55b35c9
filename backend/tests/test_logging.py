import logging

from timetable.services.logging import KeyValueFormatter, bind_trace_id, log_kv


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.setFormatter(KeyValueFormatter())
        self.lines = []

    def emit(self, record):
        self.lines.append(self.format(record))


def test_key_value_line_carries_trace_id_and_quotes_values():
    logger = logging.getLogger("timetable.test_logging")
    logger.propagate = False
    logger.setLevel(logging.INFO)
    capture = _Capture()
    logger.addHandler(capture)
    try:
        bind_trace_id("abc12345")
        log_kv(logger, logging.INFO, "upstream.response", url="https://x.test/a b", status=200, note=None)
    finally:
        logger.removeHandler(capture)

    (line,) = capture.lines
    assert "level=INFO" in line
    assert "logger=timetable.test_logging" in line
    assert "trace_id=abc12345" in line
    assert "msg=upstream.response" in line
    assert 'url="https://x.test/a b"' in line
    assert "status=200" in line
    assert "note=-" in line
    assert "\n" not in line
