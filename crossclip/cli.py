"""CrossClip 命令行入口

    crossclip serve [--config FILE] [--host HOST] [--port PORT] [--log-level LEVEL]

配置按 配置文件 -> 环境变量 -> 命令行参数 的顺序合并，后者覆盖前者。
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel

from . import __version__
from .exceptions import ConfigurationError
from .hub import run_server
from .utils import RelayConfig, configure_logging, get_logger

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossclip", description="CrossClip 跨设备剪贴板中继服务器"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="启动中继服务器")
    serve.add_argument("--config", help="JSON 配置文件路径")
    serve.add_argument("--host", help="绑定地址 (默认: 0.0.0.0)")
    serve.add_argument("--port", type=int, help="监听端口 (默认: 8080)")
    serve.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别 (默认: INFO)",
    )
    return parser


def load_config(args: argparse.Namespace) -> RelayConfig:
    """根据命令行参数组装配置

    Raises:
        ConfigurationError: 配置文件或环境变量不合法
    """
    config = RelayConfig.from_file(args.config) if args.config else RelayConfig()
    config = RelayConfig.from_env(config)
    config.update(host=args.host, port=args.port, log_level=args.log_level)
    config.validate()
    return config


def _print_banner(config: RelayConfig) -> None:
    console.print(
        Panel.fit(
            f"[bold]CrossClip[/bold] v{__version__}\n"
            f"WebSocket: ws://{config.host}:{config.port}{config.ws_path}\n"
            f"健康检查: http://{config.host}:{config.port}{config.health_path}",
            title="🔐 中继服务器",
            border_style="cyan",
        )
    )


def serve(args: argparse.Namespace) -> int:
    try:
        config = load_config(args)
    except ConfigurationError as e:
        console.print(f"[red]❌ 配置错误: {e.message}[/red]")
        return 2

    configure_logging(config.log_level, config.log_file, config.enable_rich_logging)
    logger = get_logger("crossclip.cli")
    _print_banner(config)

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号，服务器已停止")
    except OSError as e:
        logger.error(f"服务器启动失败: {e}")
        return 1

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return serve(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
