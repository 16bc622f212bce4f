"""
toolkit のテスト。

狙い：
- CLI優先の判定（どのオプションが明示されたか）が1ダッシュ/2ダッシュの両方で効くか
- .env / 環境変数の読み方が想定どおりか
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

import toolkit


def test_parse_provided_options_normalizes_dashes() -> None:
    argv = ["-operation", "add", "--fileName=db.json", "-item", '{"id":"1"}', "-", "-5"]
    assert toolkit.parse_provided_options(argv) == {"operation", "fileName", "item"}
    assert toolkit.parse_provided_options(None) == set()


def test_parse_bool_truthy_and_falsey() -> None:
    assert toolkit.parse_bool("1") is True
    assert toolkit.parse_bool("YES") is True
    assert toolkit.parse_bool(" on ") is True

    assert toolkit.parse_bool("0") is False
    assert toolkit.parse_bool("No") is False
    assert toolkit.parse_bool("") is False


def test_load_env_file_parses_key_value_and_ignores_comments(tmp_path: Path) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "# comment",
                "",
                "export RECSTORE_VERBOSE=1",
                "RECSTORE_FILE_NAME='users.json'",
                'EMPTY=""',
                "NO_EQUAL_SIGN",
            ]
        ),
        encoding="utf-8",
    )

    env = toolkit.load_env_file(env_path, toolkit.setup_logger("test", False))

    assert env == {"RECSTORE_VERBOSE": "1", "RECSTORE_FILE_NAME": "users.json", "EMPTY": ""}


def test_load_env_file_missing_returns_empty(tmp_path: Path) -> None:
    assert toolkit.load_env_file(tmp_path / "nope.env", toolkit.setup_logger("test", False)) == {}


def test_get_env_prefers_env_file_over_os_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECSTORE_FILE_NAME", "from_os.json")

    assert toolkit.get_env("RECSTORE_FILE_NAME", {"RECSTORE_FILE_NAME": "from_file.json"}) == "from_file.json"
    # 空文字は「未設定」扱いなので OS 側が使われる
    assert toolkit.get_env("RECSTORE_FILE_NAME", {"RECSTORE_FILE_NAME": ""}) == "from_os.json"


def test_setup_logger_does_not_stack_handlers() -> None:
    toolkit.setup_logger("recstore-test", False)
    logger = toolkit.setup_logger("recstore-test", True)

    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO
    assert logger.propagate is False
