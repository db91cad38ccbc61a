#!/usr/bin/env python3
"""
Signal Hub 命令行入口

启动信令服务器，收到 SIGINT / SIGTERM 后优雅关闭并输出最终统计。
"""

import argparse
import asyncio
import signal
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console

from .hub import HubServer
from .monitor import print_stats
from .utils import HubConfig, configure_logging, get_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signal-hub", description="WebRTC 信令服务器（房间与协商消息转发）"
    )
    parser.add_argument("--host", default=None, help="绑定地址 (默认: 0.0.0.0)")
    parser.add_argument(
        "--port", type=int, default=None, help="监听端口 (默认: $PORT 或 3001)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别 (默认: INFO)",
    )
    parser.add_argument("--log-file", default=None, help="日志文件路径")
    parser.add_argument("--no-rich", action="store_true", help="禁用 rich 日志输出")
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="空闲连接超时秒数，0 表示禁用 (默认: 0)",
    )
    parser.add_argument(
        "--stats-interval",
        type=float,
        default=None,
        help="统计日志间隔秒数，0 表示禁用 (默认: 30)",
    )
    parser.add_argument(
        "--notify-delivery-failure",
        action="store_true",
        help="定向转发失败时回复发送者 error 消息",
    )
    return parser


def load_config(args: argparse.Namespace) -> HubConfig:
    """环境变量配置叠加命令行参数"""
    config = HubConfig.from_env()
    config.update(
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        log_file=args.log_file,
        idle_timeout=args.idle_timeout,
        stats_interval=args.stats_interval,
    )
    if args.no_rich:
        config.enable_rich_logging = False
    if args.notify_delivery_failure:
        config.notify_delivery_failure = True
    return config


async def run_server(config: HubConfig) -> Dict[str, Any]:
    """运行服务器直到收到停止信号

    Returns:
        关闭前的最终统计
    """
    logger = get_logger("signal_hub.cli")
    server = HubServer(config=config)
    stop_event = asyncio.Event()

    def signal_handler():
        logger.warning("收到停止信号，正在关闭服务器...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except (NotImplementedError, RuntimeError):
            # Windows 不支持 add_signal_handler，依赖 KeyboardInterrupt
            logger.debug(f"当前平台不支持信号处理 ({sig})")

    await server.start()
    try:
        await stop_event.wait()
    finally:
        final_stats = server.get_stats()
        await server.stop()
    return final_stats


def main(argv: Optional[List[str]] = None) -> int:
    """主函数"""
    args = build_parser().parse_args(argv)
    config = load_config(args)

    configure_logging(
        level=config.log_level,
        log_file=config.log_file,
        enable_rich=config.enable_rich_logging,
        log_format=config.log_format,
    )
    logger = get_logger("signal_hub.cli")

    try:
        final_stats = asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.warning("再见!")
        return 0
    except OSError as e:
        logger.error(f"无法监听 {config.host}:{config.port}: {e}")
        return 1

    print_stats(final_stats, Console())
    return 0


if __name__ == "__main__":
    sys.exit(main())
