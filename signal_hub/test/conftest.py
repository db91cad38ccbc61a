"""测试公共工具"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest
from websockets.protocol import State

from signal_hub.hub import Connection
from signal_hub.utils import configure_logging


class FakeWebSocket:
    """记录发送内容的假 WebSocket"""

    def __init__(self, fail: bool = False):
        self.state = State.OPEN
        self.fail = fail
        # 大于 0 时每次发送先卡住这么多秒
        self.stall = 0.0
        self.sent: List[Dict[str, Any]] = []
        self.close_code: Optional[int] = None

    async def send(self, frame: str) -> None:
        if self.stall:
            await asyncio.sleep(self.stall)
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(json.loads(frame))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.state = State.CLOSED
        self.close_code = code

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == message_type]

    def types(self) -> List[str]:
        return [m.get("type") for m in self.sent]

    def clear(self) -> None:
        self.sent.clear()


def make_connection(fail: bool = False) -> Connection:
    return Connection(FakeWebSocket(fail=fail))


@pytest.fixture(autouse=True, scope="session")
def quiet_logging():
    configure_logging(level="WARNING", enable_rich=False)
