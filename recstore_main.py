"""
recstore のエントリーポイント（薄いラッパー）

狙い：
- import される「実装本体」（recstore.py）と、CLI実行の「入口」を分離する
- テストは `recstore.py` を直接 import して行う（副作用の少ない形）
"""

from __future__ import annotations

import sys


def run() -> None:
    from recstore import main

    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
