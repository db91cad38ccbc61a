"""
客户端模块
"""

from .base import SignalingClient

__all__ = ["SignalingClient"]
