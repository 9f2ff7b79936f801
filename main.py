#!/usr/bin/env python3
"""
Zoom Phone Call Relay アプリケーションエントリーポイント

.env と環境変数から設定を読み込み、検証し、Flask 開発サーバーを起動します。

Usage:
    python main.py

Environment Variables (Required):
    - ZOOM_SECRET_TOKEN: Zoom Webhook の Secret Token
    - DOWNSTREAM_BASE_URL: ケース管理 API のベース URL
    - DOWNSTREAM_AUTH_TOKEN: ケース管理 API の Bearer トークン

Environment Variables (Optional):
    - SELF_BASE_URL: 録音プロキシのベース URL
    - CASE_LOOKUP_PARTY: 案件検索に使う当事者 (デフォルト: callee)
    - TIMEZONE: 時刻のタイムゾーン (デフォルト: システムのローカル時刻)
    - DOWNSTREAM_TIMEOUT: API タイムアウト（秒） (デフォルト: 30)
    - STAFF_CACHE_TTL_SECONDS: スタッフ一覧のキャッシュ期間 (デフォルト: 300)
    - CALL_RECORD_MAX_AGE_HOURS: 相関レコードの最大保持時間 (デフォルト: 0)
    - LOG_LEVEL: ログレベル (デフォルト: INFO)
    - HOST: サーバーホスト (デフォルト: 0.0.0.0)
    - PORT: サーバーポート (デフォルト: 3000)
    - DEBUG: デバッグモード (デフォルト: False)
"""

import os
import sys

from dotenv import load_dotenv

from call_relay.config import Config, ConfigurationError
from call_relay.app import create_app


def main() -> int:
    """
    アプリケーションのメインエントリーポイント

    Returns:
        int: 終了コード (0: 正常終了, 1: エラー終了)
    """
    load_dotenv()

    try:
        print("設定を読み込んでいます...")
        config = Config.from_env()
        print("設定の読み込みが完了しました。")

        app = create_app(config)

        host = os.environ.get("HOST", "0.0.0.0")
        port = int(os.environ.get("PORT", "3000"))
        debug = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")

        print(f"サーバーを起動しています... (host={host}, port={port}, debug={debug})")
        print("サーバーを停止するには Ctrl+C を押してください。")

        # 同じ通話の Webhook が並行して届くため threaded で起動する
        app.run(host=host, port=port, debug=debug, threaded=True)

        return 0

    except ConfigurationError as e:
        print(f"\n[エラー] 設定エラーが発生しました:", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        print("\n必須の環境変数:", file=sys.stderr)
        print("  - ZOOM_SECRET_TOKEN: Zoom Webhook の Secret Token", file=sys.stderr)
        print("  - DOWNSTREAM_BASE_URL: ケース管理 API のベース URL", file=sys.stderr)
        print("  - DOWNSTREAM_AUTH_TOKEN: ケース管理 API の Bearer トークン", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nサーバーを停止しました。")
        return 0


if __name__ == "__main__":
    sys.exit(main())
