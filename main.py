#!/usr/bin/env python3
"""
Call Matcher アプリケーションエントリーポイント

このモジュールはアプリケーションのメインエントリーポイントです。
.env と環境変数から設定を読み込み、検証し、
Flask 開発サーバーを起動します。

Usage:
    python main.py

Environment Variables (Optional):
    - DATABASE_PATH: SQLite データベースファイル (デフォルト: call_matcher.db)
    - MATCH_TIME_TOLERANCE_MINUTES: 時刻の許容差（分） (デフォルト: 5)
    - MATCH_DURATION_TOLERANCE_SECONDS: 通話時間の許容差（秒） (デフォルト: 30)
    - MATCH_PHONE_NUMBER: 電話番号を照合に使用する (デフォルト: true)
    - MATCH_REQUIRE_DISPOSITION: 処理結果の一致を要求する (デフォルト: false)
    - MATCH_MIN_SCORE: 自動判定の最低スコア (デフォルト: 0.7)
    - MATCH_PARALLEL_THRESHOLD: 並列採点を開始する候補数 (デフォルト: 200)
    - MATCH_MAX_WORKERS: 並列採点のワーカー数 (デフォルト: 4)
    - LOG_LEVEL: ログレベル (デフォルト: INFO)
    - HOST: サーバーホスト (デフォルト: 0.0.0.0)
    - PORT: サーバーポート (デフォルト: 5000)
    - DEBUG: デバッグモード (デフォルト: False)
"""

import os
import sys

from dotenv import load_dotenv

from callmatch.config import Config, ConfigurationError
from callmatch.app import create_app


def main() -> int:
    """
    アプリケーションのメインエントリーポイント

    Returns:
        int: 終了コード (0: 正常終了, 1: エラー終了)
    """
    try:
        # .env ファイルがあれば環境変数に読み込む
        load_dotenv()

        print("設定を読み込んでいます...")
        config = Config.from_env()
        print("設定の読み込みが完了しました。")

        print("アプリケーションを初期化しています...")
        app = create_app(config)
        print("アプリケーションの初期化が完了しました。")

        # サーバー設定を環境変数から取得
        host = os.environ.get("HOST", "0.0.0.0")
        port = int(os.environ.get("PORT", "5000"))
        debug = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")

        print(f"サーバーを起動しています... (host={host}, port={port}, debug={debug})")
        print(f"データベース: {config.database_path}")
        print("サーバーを停止するには Ctrl+C を押してください。")

        app.run(host=host, port=port, debug=debug)

        return 0

    except ConfigurationError as e:
        print(f"\n[エラー] 設定エラーが発生しました:", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        print("\n環境変数の値を確認してから再度実行してください。", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        # Ctrl+C による終了
        print("\nサーバーを停止しました。")
        return 0

    except Exception as e:
        # 予期しないエラー
        print(f"\n[エラー] 予期しないエラーが発生しました:", file=sys.stderr)
        print(f"  {type(e).__name__}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
