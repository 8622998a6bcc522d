import json
import logging
import logging.handlers
import sys

from packdesk.core.logging import (
    DevFormatter,
    JsonFormatter,
    configureLogging,
    getLogContext,
    logContext,
    setLogContext,
)



def _record(msg: str = "hello %s", args=("world",), excInfo=None) -> logging.LogRecord:
    return logging.LogRecord("packdesk.test", logging.INFO, __file__, 1, msg, args, excInfo)



def test_devFormatter_appends_context_in_fixed_order():
    setLogContext(command="select_pack", userId="alice", refId="main", unrelated="x")
    line = DevFormatter().format(_record())
    assert line == "INFO: [packdesk.test] hello world [alice/main/select_pack]"



def test_devFormatter_without_context():
    assert DevFormatter().format(_record()) == "INFO: [packdesk.test] hello world"



def test_jsonFormatter_carries_context_and_exception():
    setLogContext(operationId="pack_apply_12345678")
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record("failed", (), sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "info"
    assert payload["logger"] == "packdesk.test"
    assert payload["msg"] == "failed"
    assert payload["ctx"] == {"operationId": "pack_apply_12345678"}
    assert payload["exc"]["type"] == "ValueError"
    assert payload["exc"]["message"] == "boom"
    assert "Traceback" in payload["exc"]["stack"]



def test_logContext_restores_previous_values():
    setLogContext(userId="alice")
    with logContext(command="apply", refId=None):
        assert getLogContext() == {"userId": "alice", "command": "apply"}
        with logContext(userId="bob"):
            assert getLogContext()["userId"] == "bob"
        assert getLogContext()["userId"] == "alice"
    assert getLogContext() == {"userId": "alice"}



def test_configureLogging_adds_rotating_json_file(writeSettings, tmp_path):
    logFile = tmp_path / "packdesk.log"
    writeSettings({"logging": {"devMode": False, "file": str(logFile)}})

    root = configureLogging()
    try:
        assert root.level == logging.INFO
        fileHandlers = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert len(fileHandlers) == 1
        assert isinstance(fileHandlers[0].formatter, JsonFormatter)
        assert logging.getLogger("httpx").propagate is False
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        root.setLevel(logging.WARNING)



def test_configureLogging_applies_level_overrides(writeSettings):
    writeSettings({"logging": {"levels": {"packdesk.packs": "error", "httpx": "bogus"}}})

    root = configureLogging()
    try:
        assert root.level == logging.DEBUG
        assert logging.getLogger("packdesk.packs").level == logging.ERROR
        # unknown level names fall back to INFO
        assert logging.getLogger("httpx").level == logging.INFO
    finally:
        logging.getLogger("packdesk.packs").setLevel(logging.NOTSET)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        root.setLevel(logging.WARNING)
