"""
recstore: JSONファイル1つをストアにした小さなレコード管理ツール

このツールがやること（ざっくり）：
- レコード {id, email, age} の配列を JSON ファイルに保存する
- 1回の起動で 1操作だけ行う（list / add / remove / findById）
- 毎回「ファイル全体を読む → メモリ上で操作 → 必要なら全体を書き戻す」

使い方:
    python recstore_main.py -operation list -fileName users.json
    python recstore_main.py -operation add -fileName users.json -item '{"id":"1","email":"a@b.com","age":30}'
    python recstore_main.py -operation findById -fileName users.json -id 1
    python recstore_main.py -operation remove -fileName users.json -id 1

設計メモ：
- stdout は結果専用（生バイト、末尾改行なし）。ログとエラーは stderr
- 「見つからない」「既にある」はエラーではなく、stdout に出すメッセージ
- 同時実行のロックはしない（1プロセス1操作の前提）
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Callable

import toolkit

LOGGER_NAME = "recstore"

# 作成・書き込み時のパーミッション（umask は別途かかる）
FILE_PERM = 0o644

VALID_OPERATIONS = ("add", "list", "remove", "findById")


# -------------------------
# メッセージ（純粋関数）
# -------------------------


class MessageKind(Enum):
    MISSING_OPERATION = "-operation flag has to be specified"
    MISSING_FILE_NAME = "-fileName flag has to be specified"
    INVALID_OPERATION = "Operation {value} not allowed!"
    MISSING_ITEM = "-item flag has to be specified"
    MISSING_ID = "-id flag has to be specified"
    ITEM_EXISTS = "Item with id {value} already exists"
    ID_NOT_FOUND = "Item with id {value} not found"


def format_message(kind: MessageKind, value: str = "") -> str:
    """(種類, 値) からメッセージ文字列を作る。共有の可変状態は持たない。"""
    return kind.value.format(value=value)


# -------------------------
# 例外
# -------------------------


class RecordStoreError(Exception):
    """recstore が扱うエラーの基底クラス。main で捕まえて終了コードに変換する。"""


class MissingArgumentError(RecordStoreError):
    pass


class InvalidOperationError(RecordStoreError):
    pass


class StoreIOError(RecordStoreError):
    """ファイルの作成/読み込み/書き込みに失敗した。"""


class ParseError(RecordStoreError):
    """ストアファイル、または -item の JSON が壊れている。"""


class SerializeError(RecordStoreError):
    pass


# -------------------------
# データモデル（DTO）
# -------------------------


@dataclass(frozen=True)
class Record:
    """
    1件ぶんのレコード。

    JSONからの変換ルール：
    - キー名は大文字小文字を区別しない（"ID" も id）。同じ項目が複数あれば後勝ち
    - 欠けているキー / null はゼロ値（"" / 0）で埋める。レコード自体が null でもゼロ値
    - 知らないキーは無視する
    - 型が違う値（age が文字列・小数・bool など）は ParseError
    """

    id: str
    email: str
    age: int

    @classmethod
    def from_dict(cls, obj: Any) -> Record:
        if obj is None:
            obj = {}
        if not isinstance(obj, dict):
            raise ParseError(f"record must be a JSON object: {obj!r}")

        rid = _field(obj, "id")
        email = _field(obj, "email")
        age = _field(obj, "age")
        rid = "" if rid is None else rid
        email = "" if email is None else email
        age = 0 if age is None else age

        if not isinstance(rid, str):
            raise ParseError(f"record id must be a string: {rid!r}")
        if not isinstance(email, str):
            raise ParseError(f"record email must be a string: {email!r}")
        # bool は int のサブクラスなので先に弾く
        if isinstance(age, bool) or not isinstance(age, int):
            raise ParseError(f"record age must be an integer: {age!r}")
        return cls(id=rid, email=email, age=age)

    def to_dict(self) -> dict[str, Any]:
        # キー順は id, email, age で固定（出力のバイト列を安定させる）
        return {"id": self.id, "email": self.email, "age": self.age}


def _field(obj: dict[str, Any], name: str) -> Any:
    value = None
    for key, v in obj.items():
        if key.casefold() == name:
            value = v
    return value


def dumps(obj: Any) -> bytes:
    """
    コンパクトなJSON（区切りに空白なし、UTF-8）にする。

    `"\\ud800"` のような単独サロゲートは UTF-8 にできないので SerializeError。
    """
    try:
        return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SerializeError(f"cannot serialize: {exc}") from exc


def to_output(message: str) -> bytes:
    """
    stdout に出すメッセージをバイト列にする。

    POSIX で UTF-8 でない引数（-id など）は surrogateescape で元のバイトに戻す。
    それでも表せない単独サロゲートは "?" に置き換える。
    """
    try:
        return message.encode("utf-8", errors="surrogateescape")
    except UnicodeEncodeError:
        return message.encode("utf-8", errors="replace")


def parse_item(text: str) -> Record:
    """-item に渡された JSON オブジェクトを Record にする。"""
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"-item is not valid JSON: {exc}") from exc
    return Record.from_dict(obj)


# -------------------------
# 設定（CLI引数をまとめた型）
# -------------------------


@dataclass(frozen=True)
class Arguments:
    """
    1回の実行で使う引数。作った時点で検証済みになる。

    検証の順番（最初に引っかかったものが勝つ）：
    1. operation が空
    2. file_name が空
    3. operation が add/list/remove/findById 以外
    4. 操作ごとの必須（add は item、remove/findById は id）
    """

    operation: str
    file_name: str
    item: str = ""
    id: str = ""

    def __post_init__(self) -> None:
        if not self.operation:
            raise MissingArgumentError(format_message(MessageKind.MISSING_OPERATION))
        if not self.file_name:
            raise MissingArgumentError(format_message(MessageKind.MISSING_FILE_NAME))
        if self.operation not in VALID_OPERATIONS:
            raise InvalidOperationError(format_message(MessageKind.INVALID_OPERATION, self.operation))
        if self.operation == "add" and not self.item:
            raise MissingArgumentError(format_message(MessageKind.MISSING_ITEM))
        if self.operation in ("remove", "findById") and not self.id:
            raise MissingArgumentError(format_message(MessageKind.MISSING_ID))


# -------------------------
# ストア（I/O境界：ファイル）
# -------------------------


def _opener(path: str, flags: int) -> int:
    return os.open(path, flags, FILE_PERM)


def load_records(path: Path) -> list[Record]:
    """
    ストアファイルを読み込んで Record のリストにする。

    - ファイルがなければ空で作る（作れなければ StoreIOError。黙って続けない）
    - 中身が空なら空リスト
    - それ以外は JSON 配列としてパースする。一部だけ成功、はない
    """
    try:
        # "a+b": なければ作成、あれば中身を残したまま読み書きで開く
        with open(path, "a+b", opener=_opener) as f:
            f.seek(0)
            content = f.read()
    except OSError as exc:
        raise StoreIOError(f"cannot open store file {path}: {exc}") from exc

    if not content:
        return []

    try:
        data = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError(f"store file {path} is not valid JSON: {exc}") from exc
    # 中身が `null` だけのファイルは空のストアとして扱う
    if data is None:
        return []
    if not isinstance(data, list):
        raise ParseError(f"store file {path} must contain a JSON array")
    return [Record.from_dict(obj) for obj in data]


def save_records(path: Path, records: list[Record]) -> None:
    """コレクション全体を書き出してファイルを上書きする（アトミックではない）。"""
    content = dumps([r.to_dict() for r in records])
    try:
        with open(path, "wb", opener=_opener) as f:
            f.write(content)
    except OSError as exc:
        raise StoreIOError(f"cannot write store file {path}: {exc}") from exc


def list_raw(path: Path) -> bytes:
    """ファイルの中身をそのまま返す。パースしないので、壊れたJSONでもそのまま出る。"""
    try:
        return path.read_bytes()
    except OSError as exc:
        raise StoreIOError(f"cannot read store file {path}: {exc}") from exc


# -------------------------
# レコード操作（コアロジック）
# -------------------------


def _index_of(records: list[Record], record_id: str) -> int:
    for i, r in enumerate(records):
        if r.id == record_id:
            return i
    return -1


def add_record(records: list[Record], record: Record) -> tuple[str, list[Record]]:
    """
    id が重複していなければ末尾に追加した新しいリストを返す。

    重複していたら「既にある」メッセージと、元と同じ内容のリストを返す（エラーではない）。
    引数の records 自体は変更しない。
    """
    if _index_of(records, record.id) >= 0:
        return format_message(MessageKind.ITEM_EXISTS, record.id), list(records)
    return "", [*records, record]


def remove_record(records: list[Record], record_id: str) -> tuple[str, list[Record]]:
    """最初に一致した1件を取り除く。残りの順番はそのまま。"""
    idx = _index_of(records, record_id)
    if idx < 0:
        return format_message(MessageKind.ID_NOT_FOUND, record_id), list(records)
    return "", records[:idx] + records[idx + 1 :]


def find_by_id(records: list[Record], record_id: str) -> str:
    """見つかればそのレコードのJSON、なければ空文字。"""
    idx = _index_of(records, record_id)
    if idx < 0:
        return ""
    return dumps(records[idx].to_dict()).decode("utf-8")


# -------------------------
# 操作の実行（ハンドラ）
# -------------------------


def _list(args: Arguments, out: BinaryIO, logger: logging.Logger) -> None:
    content = list_raw(Path(args.file_name))
    logger.info("list: path=%s bytes=%d", args.file_name, len(content))
    out.write(content)


def _add(args: Arguments, out: BinaryIO, logger: logging.Logger) -> None:
    record = parse_item(args.item)
    path = Path(args.file_name)
    records = load_records(path)
    logger.info("loaded: path=%s records=%d", path, len(records))

    message, updated = add_record(records, record)
    out.write(to_output(message))

    # メッセージが空 = 追加できた。重複のときはファイルに触らない
    if message:
        logger.info("add skipped: id=%s", record.id)
        return
    save_records(path, updated)
    logger.info("saved: path=%s records=%d", path, len(updated))


def _remove(args: Arguments, out: BinaryIO, logger: logging.Logger) -> None:
    path = Path(args.file_name)
    records = load_records(path)
    logger.info("loaded: path=%s records=%d", path, len(records))

    message, updated = remove_record(records, args.id)
    out.write(to_output(message))

    if message:
        logger.info("remove skipped: id=%s", args.id)
        return
    save_records(path, updated)
    logger.info("saved: path=%s records=%d", path, len(updated))


def _find_by_id(args: Arguments, out: BinaryIO, logger: logging.Logger) -> None:
    path = Path(args.file_name)
    records = load_records(path)
    logger.info("loaded: path=%s records=%d", path, len(records))

    message = find_by_id(records, args.id)
    if not message:
        logger.info("findById: id=%s not found", args.id)
    out.write(to_output(message))


_HANDLERS: dict[str, Callable[[Arguments, BinaryIO, logging.Logger], None]] = {
    "list": _list,
    "add": _add,
    "remove": _remove,
    "findById": _find_by_id,
}


def perform(args: Arguments, out: BinaryIO, logger: logging.Logger | None = None) -> None:
    """
    検証済みの Arguments を受け取って 1操作を実行し、結果のバイト列を out に書く。

    失敗したら RecordStoreError のサブクラスがそのまま上がる（リトライ・ロールバックはしない）。
    """
    if logger is None:
        logger = logging.getLogger(LOGGER_NAME)
    _HANDLERS[args.operation](args, out, logger)


# -------------------------
# CLIパース（I/O境界：入力）
# -------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    CLI引数を定義して、解析結果（args）を返す。

    フラグは `-operation` のような1ダッシュ形式と `--operation` の両方を受け付ける。
    必須チェックは argparse ではなく Arguments 側でやる（メッセージと順番を固定するため）。
    """
    parser = argparse.ArgumentParser(
        description="Manage records (id, email, age) stored as a JSON array in a file.",
        allow_abbrev=False,
    )

    parser.add_argument(
        "-operation",
        "--operation",
        default="",
        help="実行する操作: add | list | remove | findById",
    )
    parser.add_argument(
        "-fileName",
        "--fileName",
        dest="file_name",
        default=None,  # config/envで埋められるように「未指定(None)」を区別する
        help="ストアにする JSON ファイルのパス",
    )
    parser.add_argument(
        "-item",
        "--item",
        default="",
        help='add するレコードの JSON（例: {"id":"1","email":"a@b.com","age":30}）',
    )
    parser.add_argument("-id", "--id", default="", help="remove / findById の対象 id")

    parser.add_argument("-verbose", "--verbose", action="store_true", help="処理中の詳細ログを stderr に出す")
    parser.add_argument(
        "-config",
        "--config",
        type=Path,
        default=None,
        help="JSON config file path (e.g., config.json). CLI args override config.",
    )
    parser.add_argument(
        "-env-file",
        "--env-file",
        dest="env_file",
        type=Path,
        default=None,
        help="Load environment variables from a .env file before processing (e.g., .env).",
    )

    return parser.parse_args(argv)


# -------------------------
# 設定ファイル / env（I/O境界：入力）
# -------------------------


def load_config(path: Path, logger: logging.Logger) -> dict[str, Any]:
    """
    JSON設定ファイルを読み込む。

    期待する例：
      {"fileName": "users.json", "verbose": true}

    読めない / オブジェクトでない場合は logger.error を出して空扱いにする。
    """
    try:
        data = json.loads(path.expanduser().read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.error("config load failed: %s (%s)", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.error("config must be a JSON object: %s", path)
        return {}
    return data


def apply_config(args: argparse.Namespace, cfg: dict[str, Any], provided: set[str], logger: logging.Logger) -> None:
    """
    configの値を args に反映する（CLIで明示されたものは上書きしない）。

    型が合わない値（fileName が null や数値、verbose が文字列など）は
    logger.error を出してそのキーだけ無視する。
    """
    if "fileName" not in provided and "fileName" in cfg:
        v = cfg["fileName"]
        if isinstance(v, str):
            args.file_name = v
        else:
            logger.error("config fileName must be a string, ignored: %r", v)
    if "verbose" not in provided and "verbose" in cfg:
        v = cfg["verbose"]
        if isinstance(v, bool):
            args.verbose = v
        else:
            logger.error("config verbose must be true/false, ignored: %r", v)
    logger.info("config applied (CLI overrides config)")


def apply_env(args: argparse.Namespace, env_file: dict[str, str], provided: set[str], logger: logging.Logger) -> None:
    """
    envの値を args に反映する（CLI > env > config）。

    対応する環境変数：
      RECSTORE_FILE_NAME, RECSTORE_VERBOSE（RECSTORE_CONFIG は resolve_effective_args で先に読む）

    operation / item / id は1回ごとの指定なので env からは取らない。
    """
    if "fileName" not in provided:
        v = toolkit.get_env("RECSTORE_FILE_NAME", env_file)
        if v:
            args.file_name = v
    if "verbose" not in provided:
        v = toolkit.get_env("RECSTORE_VERBOSE", env_file)
        if v is not None:
            args.verbose = toolkit.parse_bool(v)
    logger.info("env applied (CLI overrides env)")


def resolve_effective_args(argv: list[str] | None) -> tuple[argparse.Namespace, logging.Logger]:
    """CLI/env/config を統合して「最終的に使う args」と logger を返す。"""
    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)
    provided = toolkit.parse_provided_options(argv)

    # まずはCLIのverboseで暫定loggerを作る（env/configでverboseが変わったら作り直す）
    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)

    env_file: dict[str, str] = {}
    if args.env_file is not None:
        env_file = toolkit.load_env_file(args.env_file, logger)

    if args.config is None and "config" not in provided:
        v = toolkit.get_env("RECSTORE_CONFIG", env_file)
        if v:
            args.config = Path(v)

    if args.config is not None:
        cfg = load_config(args.config, logger)
        apply_config(args, cfg, provided, logger)

    apply_env(args, env_file, provided, logger)

    if args.file_name is None:
        args.file_name = ""

    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)
    return args, logger


def build_arguments(ns: argparse.Namespace) -> Arguments:
    return Arguments(operation=ns.operation, file_name=ns.file_name, item=ns.item, id=ns.id)


# -------------------------
# 実行入口
# -------------------------


def main(argv: list[str] | None = None, out: BinaryIO | None = None) -> int:
    """
    実行入口（テストからも呼べる形）。

    終了コード：
    - 0: 成功（「見つからない」「既にある」も成功扱い）
    - 2: 引数の不備（フラグ不足、不正な operation）
    - 1: ストアの失敗（I/O、JSONパース、シリアライズ）
    """
    ns, logger = resolve_effective_args(argv)
    if out is None:
        out = sys.stdout.buffer

    try:
        args = build_arguments(ns)
        logger.info("operation=%s fileName=%s", args.operation, args.file_name)
        perform(args, out, logger)
    except (MissingArgumentError, InvalidOperationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except RecordStoreError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        out.flush()
    return 0
