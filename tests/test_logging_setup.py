import logging
import logging.handlers

from core.logging_setup import setup_logging, teardown_logging


def _rotating_handlers():
    return [h for h in logging.getLogger().handlers if isinstance(h, logging.handlers.RotatingFileHandler)]


def test_setup_installs_rotating_file_handler(tmp_path, restore_logging) -> None:
    setup_logging(log_level="DEBUG", logs_dir=tmp_path, console_output=False)
    handlers = _rotating_handlers()
    assert len(handlers) == 1
    assert handlers[0].maxBytes == 5 * 1024 * 1024
    assert handlers[0].backupCount == 3

    logging.getLogger("pipeline.test").info("hello %s", "world")
    handlers[0].flush()
    assert "hello world" in (tmp_path / "pipeline.log").read_text(encoding="utf-8")


def test_setup_twice_does_not_stack_handlers(tmp_path, restore_logging) -> None:
    setup_logging(logs_dir=tmp_path, console_output=True)
    setup_logging(logs_dir=tmp_path, console_output=True)
    assert len(_rotating_handlers()) == 1
    stream_handlers = [
        h for h in logging.getLogger().handlers
        if type(h) is logging.StreamHandler
    ]
    assert len(stream_handlers) == 1


def test_teardown_removes_handlers(tmp_path) -> None:
    setup_logging(logs_dir=tmp_path, console_output=False)
    teardown_logging()
    assert _rotating_handlers() == []
