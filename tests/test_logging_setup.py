import logging
import os

import pytest

from flyer_bot.logging_setup import AuditChannelHandler, build_sinks, configure_logging, daily_log_path

from conftest import FakeTransport


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_default_sinks(settings, transport):
    sinks = build_sinks(settings, transport)
    assert set(sinks) == {"console", "file"}

    with_group = settings.__class__(log_dir=settings.log_dir, log_group_id="120363@g.us")
    group_sinks = build_sinks(with_group, transport)
    assert set(group_sinks) == {"console", "file", "audit"}
    for handler in list(sinks.values()) + list(group_sinks.values()):
        handler.close()


def test_file_sink_writes_daily_file(settings, restore_root):
    configure_logging(settings, sinks=build_sinks(settings))

    logging.getLogger("flyer_bot.test").warning("Flyer upload slow")
    for handler in restore_root.handlers:
        handler.flush()

    with open(daily_log_path(settings.log_dir), encoding="utf-8") as f:
        line = f.read().strip().splitlines()[-1]
    assert line.startswith("[")
    assert line.endswith("[WARN] Flyer upload slow")


def test_audit_sink_forwards_with_prefix(restore_root):
    transport = FakeTransport()
    handler = AuditChannelHandler(transport, "120363@g.us")
    handler.addFilter(logging.Filter("flyer_bot"))

    class Settings:
        log_level = "DEBUG"

    listener = configure_logging(Settings(), sinks={"audit": handler})
    try:
        logging.getLogger("flyer_bot.media.pipeline").error("Flyer failed")
        logging.getLogger("urllib3.connectionpool").error("not forwarded")
    finally:
        listener.stop()

    assert len(transport.sent) == 1
    chat_id, text, _ = transport.sent[0]
    assert chat_id == "120363@g.us"
    assert text.startswith("❌ [")
    assert text.endswith("[ERROR] Flyer failed")


def test_reconfigure_replaces_previous_sinks(settings, restore_root):
    configure_logging(settings, sinks={"console": logging.StreamHandler()})
    configure_logging(settings, sinks={"console": logging.StreamHandler()})

    tagged = [h for h in restore_root.handlers if getattr(h, "_flyer_bot_sink", None)]
    assert len(tagged) == 1


def test_send_failure_does_not_raise(monkeypatch):
    class Exploding:
        def send_message(self, chat_id, text):
            raise RuntimeError("gateway down")

    monkeypatch.setattr(logging, "raiseExceptions", False)
    handler = AuditChannelHandler(Exploding(), "g")
    handler.emit(logging.LogRecord("flyer_bot", logging.INFO, __file__, 1, "hi", None, None))


def test_daily_log_path_uses_date(tmp_path):
    path = daily_log_path(str(tmp_path))
    assert os.path.dirname(path) == str(tmp_path)
    assert os.path.basename(path).startswith("logs-")
