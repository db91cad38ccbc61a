"""Signal Hub 日志系统

本模块提供统一的日志接口，默认使用 rich 富文本日志输出到控制台，
可选输出到文件。所有模块日志器都挂在根日志器 "signal_hub" 之下。
"""

import logging
import sys
from typing import Optional

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "signal_hub"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    name: Optional[str] = ROOT_LOGGER_NAME,
    level: Optional[str] = "info",
    log_file: Optional[str] = None,
    enable_rich: Optional[bool] = True,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """设置日志器

    创建并配置一个日志器实例。支持控制台输出和文件输出。

    Args:
        name: 日志器名称
        level: 日志级别
        log_file: 日志文件路径，为 None 时不写文件
        enable_rich: 是否启用 rich 日志
        log_format: 标准处理器使用的格式

    Returns:
        配置好的日志器
    """
    level = (level or "INFO").upper()
    enable_rich = enable_rich if enable_rich is not None else True
    log_format = log_format or DEFAULT_FORMAT

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # 清除现有处理器
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if enable_rich:
        rich_handler = RichHandler(
            rich_tracebacks=True, show_time=True, show_level=True, show_path=True
        )
        rich_handler.setLevel(level)
        logger.addHandler(rich_handler)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(console_handler)

    # 文件处理器（如果指定了日志文件）
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """获取日志器

    子日志器通过继承根日志器（"signal_hub"）的处理器输出，
    根日志器在首次使用时按默认参数配置。

    Args:
        name: 日志器名称

    Returns:
        日志器实例
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        configure_logging(ROOT_LOGGER_NAME)
    return logging.getLogger(name)
