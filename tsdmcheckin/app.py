from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from .cache import DedupCache
from .client import TsdmClient
from .errors import ConfigurationError, TsdmError
from .models import Account
from .notifier import Notifier, create_notifier
from .remote import TsdmRemote
from .runner import CheckinLoop, ScanLoop, WorkLoop
from .scheduler import SchedulerService
from .scheduling import SchedulePolicy, next_work_delay
from .settings import AppConfig, Settings, get_settings, load_config


def configure_logging(settings: Settings, *, background: bool = False) -> None:
    logger.remove()
    if not background:
        logger.add(
            sys.stdout,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
            level=settings.log_level,
        )
    Path(settings.log_dir).mkdir(parents=True, exist_ok=True)
    logger.add(
        str(Path(settings.log_dir) / "tsdm_{time:YYYY-MM-DD}.log"),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
        level="DEBUG",
        rotation="1 day",
        retention="7 days",
        enqueue=background,
    )


async def run_foreground(
    accounts: Sequence[Account],
    *,
    remote: TsdmRemote,
    notifier: Notifier,
    settings: Settings,
) -> None:
    """Run every task exactly once per account, one account after another."""
    stop_event = asyncio.Event()
    policy = SchedulePolicy.from_settings(settings)
    cache = DedupCache(settings.freshness_window)
    common = dict(remote=remote, notifier=notifier, policy=policy, stop_event=stop_event)

    for account in accounts:
        logger.info(f"[{account.name}] running tasks once")
        # 前台模式只尝试一次，不进入长时间重试
        await CheckinLoop(account, burst_attempts=0, max_retries=0, **common).step()
        outcome = await WorkLoop(account, **common).step()
        logger.info(f"[{account.name}] 下次打工将在 {next_work_delay(outcome, policy)} 后进行")
        await ScanLoop(account, cache=cache, max_concurrency=settings.scan_max_concurrency, **common).step()


async def run_background(
    accounts: Sequence[Account],
    *,
    remote: TsdmRemote,
    notifier: Notifier,
    settings: Settings,
) -> bool:
    scheduler = SchedulerService.create(
        accounts, remote=remote, notifier=notifier, settings=settings, stop_event=remote.stop_event
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            # Windows: fall back to KeyboardInterrupt handling in main()
            pass

    scheduler.start()
    try:
        await scheduler.stop_event.wait()
    finally:
        clean = await scheduler.shutdown(settings.shutdown_timeout)
    return clean


async def run(config: AppConfig, settings: Settings, *, background: bool) -> int:
    accounts = config.accounts
    notifier = create_notifier(config.push)
    client = TsdmClient.from_settings(settings)
    remote = TsdmRemote(client, settings)
    try:
        if background:
            await run_background(accounts, remote=remote, notifier=notifier, settings=settings)
        else:
            await run_foreground(accounts, remote=remote, notifier=notifier, settings=settings)
    finally:
        await client.aclose()
        await notifier.aclose()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="天使动漫论坛 签到 / 打工 / 抢红包")
    parser.add_argument("-c", "--config", default="config.yaml", help="配置文件路径")
    parser.add_argument("-d", "--daemon", action="store_true", help="后台常驻运行，直到收到 SIGINT/SIGTERM")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings, background=args.daemon)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"加载配置文件失败: {e}")
        return 2

    logger.info(f"Loaded {len(config.account)} account(s) from {args.config}")
    try:
        return asyncio.run(run(config, settings, background=args.daemon))
    except KeyboardInterrupt:
        logger.info("程序已退出")
        return 0
    except TsdmError as e:
        logger.error(f"Fatal: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
