"""Signal Hub 配置管理

本模块提供统一的配置管理接口，支持环境变量、默认值和运行时配置。
配置优先级：运行时设置（命令行） > 环境变量 > 默认值
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HubConfig:
    """Signal Hub 配置类

    包含服务器、WebSocket、协议行为与日志的所有配置项。
    """

    # Hub 服务器配置
    host: str = "0.0.0.0"
    port: int = 3001

    # WebSocket 配置
    ws_ping_interval: Optional[float] = 20.0
    ws_ping_timeout: Optional[float] = 20.0
    ws_close_timeout: float = 10.0
    max_message_size: Optional[int] = 1024 * 1024

    # 协议配置
    send_timeout: Optional[float] = 10.0  # 单次发送超时，None 表示不限制
    idle_timeout: float = 0.0  # 空闲连接超时（秒），0 表示禁用
    notify_delivery_failure: bool = False  # 定向转发失败时是否回复 error

    # 统计日志间隔（秒），0 表示禁用
    stats_interval: float = 30.0

    # 日志配置
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    enable_rich_logging: bool = True

    # 自定义配置
    custom: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "HubConfig":
        """从环境变量创建配置

        环境变量格式：SIGNAL_HUB_<配置名>。监听端口额外兼容 PORT。

        Returns:
            从环境变量读取的配置实例
        """
        config = cls()

        config.host = os.getenv("SIGNAL_HUB_HOST", config.host)
        config.port = int(
            os.getenv("SIGNAL_HUB_PORT", os.getenv("PORT", str(config.port)))
        )

        config.ws_ping_interval = float(
            os.getenv("SIGNAL_HUB_WS_PING_INTERVAL", str(config.ws_ping_interval))
        )
        config.ws_ping_timeout = float(
            os.getenv("SIGNAL_HUB_WS_PING_TIMEOUT", str(config.ws_ping_timeout))
        )
        config.ws_close_timeout = float(
            os.getenv("SIGNAL_HUB_WS_CLOSE_TIMEOUT", str(config.ws_close_timeout))
        )
        config.max_message_size = int(
            os.getenv("SIGNAL_HUB_MAX_MESSAGE_SIZE", str(config.max_message_size))
        )

        config.send_timeout = float(
            os.getenv("SIGNAL_HUB_SEND_TIMEOUT", str(config.send_timeout))
        )
        config.idle_timeout = float(
            os.getenv("SIGNAL_HUB_IDLE_TIMEOUT", str(config.idle_timeout))
        )
        config.notify_delivery_failure = _env_bool(
            "SIGNAL_HUB_NOTIFY_DELIVERY_FAILURE", config.notify_delivery_failure
        )
        config.stats_interval = float(
            os.getenv("SIGNAL_HUB_STATS_INTERVAL", str(config.stats_interval))
        )

        config.log_level = os.getenv("SIGNAL_HUB_LOG_LEVEL", config.log_level)
        config.log_format = os.getenv("SIGNAL_HUB_LOG_FORMAT", config.log_format)
        config.log_file = os.getenv("SIGNAL_HUB_LOG_FILE", config.log_file)
        config.enable_rich_logging = _env_bool(
            "SIGNAL_HUB_ENABLE_RICH_LOGGING", config.enable_rich_logging
        )

        return config

    def update(self, **kwargs) -> None:
        """更新配置项，值为 None 的项会被忽略

        Args:
            **kwargs: 要更新的配置项
        """
        for key, value in kwargs.items():
            if value is None:
                continue
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                self.custom[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置项

        Args:
            key: 配置项名称
            default: 默认值

        Returns:
            配置项的值
        """
        if hasattr(self, key):
            return getattr(self, key)
        return self.custom.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典

        Returns:
            配置的字典表示
        """
        result = {
            "host": self.host,
            "port": self.port,
            "ws_ping_interval": self.ws_ping_interval,
            "ws_ping_timeout": self.ws_ping_timeout,
            "ws_close_timeout": self.ws_close_timeout,
            "max_message_size": self.max_message_size,
            "send_timeout": self.send_timeout,
            "idle_timeout": self.idle_timeout,
            "notify_delivery_failure": self.notify_delivery_failure,
            "stats_interval": self.stats_interval,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "log_file": self.log_file,
            "enable_rich_logging": self.enable_rich_logging,
        }
        result.update(self.custom)
        return result
