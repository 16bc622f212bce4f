"""
recstore 用の「I/Oまわり」部品集（toolkit）

狙い：
- logger構成、.env読み取り、bool変換、「CLIで明示されたオプション」の判定をまとめる
- recstore.py 本体は「レコード操作そのもの」に集中できるようにする

注意：
- ここに入れるのは「どのツールでも同じ意味で使えるもの」だけ
- 環境変数名・configのキー名・エラーメッセージは recstore 側で持つ
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path


def option_name(token: str) -> str:
    """
    `-fileName=x` / `--fileName` のようなトークンから "fileName" を取り出す。

    recstore は `-x` と `--x` の両方を受け付けるので、
    ダッシュの数を区別せずに名前だけで比較できるようにする。
    """
    return token.split("=", 1)[0].lstrip("-")


def parse_provided_options(argv: list[str] | None) -> set[str]:
    """
    どのオプションが CLI で明示されたかを判定する（ダッシュを除いた名前の集合）。

    目的：
    - config/env が「既定値」を埋めるのはOK
    - ただし「ユーザーがCLIで明示した値」は上書きしない（= CLI優先を守る）

    `-` 単体や、値として渡された `-5` のような数値は名前として扱わない。
    """
    if argv is None:
        return set()
    provided: set[str] = set()
    for token in argv:
        if not token.startswith("-") or token == "-":
            continue
        name = option_name(token)
        if not name or name[0].isdigit():
            continue
        provided.add(name)
    return provided


def parse_bool(value: str) -> bool:
    """
    env用のboolパース（.env / 環境変数は文字列なので明示変換が必要）。

    true: 1, true, yes, y, on
    false: 0, false, no, n, off, 空文字
    """
    v = value.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off", ""}:
        return False
    return bool(v)


def load_env_file(path: Path, logger: logging.Logger) -> dict[str, str]:
    """
    .env 形式（KEY=VALUE）を読む。

    - 空行/コメント(#...)は無視する
    - `export KEY=VALUE` を許容する
    - 値の前後のクォート（' "）は剥がす
    - `=` を含まない行は無視する

    読めなかった場合は logger.error を出して空の dict を返す（.env は補助なので落とさない）。
    """
    try:
        text = path.expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("env file load failed: %s (%s)", path, exc)
        return {}

    env: dict[str, str] = {}
    for row in text.splitlines():
        line = row.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, val = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in {"'", '"'}:
            val = val[1:-1]
        if key:
            env[key] = val
    logger.info("env file loaded: %s (%d keys)", path, len(env))
    return env


def get_env(name: str, env_file: dict[str, str]) -> str | None:
    """
    環境変数取得。env_file（.env） > OS環境変数。空文字は「未設定」と同じ扱い。
    """
    v = env_file.get(name)
    if v:
        return v
    v = os.getenv(name)
    if v:
        return v
    return None


def setup_logger(name: str, verbose: bool) -> logging.Logger:
    """
    ログをstderrに出すためのloggerを構成する。

    stdout は list / findById の結果（生バイト）専用なので、
    進捗や失敗はすべて stderr に寄せる。
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False

    logger.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    return logger
