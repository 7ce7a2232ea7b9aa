import logging

import pytest

from scp_rerank import logging_config


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def test_configure_logging_sets_level_and_quiets_httpx(restore_root_logger, monkeypatch):
    monkeypatch.setattr(logging_config, "_is_json_mode", lambda: True)
    logging_config.configure_logging("debug")

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert logging.getLogger("httpx").level == logging.WARNING


def test_stdlib_records_are_rendered_as_json(restore_root_logger, monkeypatch, capsys):
    monkeypatch.setattr(logging_config, "_is_json_mode", lambda: True)
    logging_config.configure_logging("INFO")

    logging.getLogger("scp_rerank.batch").warning("Rate limited (attempt %d)", 2)

    err = capsys.readouterr().err
    assert '"event": "Rate limited (attempt 2)"' in err
    assert '"logger": "scp_rerank.batch"' in err
