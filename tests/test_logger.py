import logging

from util.logger import ColoredFormatter, TaskContextFilter, bind_task


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("docvault.test", logging.INFO, __file__, 1, msg, None, None)


def test_task_id_is_bound_for_the_block():
    context = TaskContextFilter()

    outside = _record()
    context.filter(outside)
    assert outside.task == "-"

    with bind_task("abc123"):
        inside = _record()
        context.filter(inside)
    assert inside.task == "abc123"

    after = _record()
    context.filter(after)
    assert after.task == "-"


def test_colored_formatter_leaves_the_record_plain():
    record = _record()
    line = ColoredFormatter("%(levelname)s %(message)s").format(record)
    assert "\033[32mINFO" in line
    assert record.levelname == "INFO"
