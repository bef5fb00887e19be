#!/usr/bin/env python3
"""
天使动漫论坛 (TSDM) 自动签到 / 打工 / 抢红包

    python checkin.py -c config.yaml        # 每个账号执行一次后退出
    python checkin.py -c config.yaml -d     # 常驻运行，Ctrl+C / SIGTERM 优雅退出
"""

from tsdmcheckin.app import main


if __name__ == "__main__":
    raise SystemExit(main())
