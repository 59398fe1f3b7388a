"""
传输层基类模块 - 定义聊天传输的统一接口。

会话核心不直接接触 WhatsApp 协议，而是通过本模块定义的两个抽象与传输层交互：

- BaseTransport：负责为某个会话建立连接（扫码配对），
  期间通过 sink 回调上报 PairingArtifact / StateChange / InboundMessage 事件
- ConnectionHandle：一条已建立的连接，由会话独占持有，
  提供 send / reclaim / logout / close 四个操作

【Java 开发者类比】
- BaseTransport 相当于 JDBC 的 Driver，open() 相当于 Driver.connect()
- ConnectionHandle 相当于 java.sql.Connection，生命周期由持有者负责
- sink 回调相当于注册给连接的事件监听器（Listener）
"""

from abc import ABC, abstractmethod
from typing import Any

from relaybot.bus.events import EventSink


class ConnectionHandle(ABC):
    """
    一条已建立的传输连接。

    属性:
        session_id: 所属会话 ID
    """

    def __init__(self, session_id: str):
        self.session_id = session_id

    @abstractmethod
    async def send(self, peer_id: str, text: str) -> None:
        """
        向联系人发送一条文本消息。

        失败时抛出异常（由会话转换为 DeliveryError）。
        """
        pass

    @abstractmethod
    async def reclaim(self) -> None:
        """
        夺回账号的主控权（WhatsApp Web 的 "Use Here"）。

        在 CONFLICT / UNPAIRED / UNLAUNCHED 状态下调用，不改变连接本身。
        """
        pass

    @abstractmethod
    async def logout(self) -> None:
        """注销 WhatsApp 登录（下次需要重新扫码）。"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """关闭连接并释放底层资源。"""
        pass


class BaseTransport(ABC):
    """
    传输层抽象基类 - 所有传输实现的统一契约。

    属性:
        name: 传输标识名（如 "whatsapp"）
        config: 传输特定的配置对象
    """

    name: str = "base"

    def __init__(self, config: Any):
        self.config = config

    @abstractmethod
    async def open(self, session_id: str, sink: EventSink) -> ConnectionHandle:
        """
        为会话建立连接，完成扫码配对后返回连接句柄。

        这是一个可能持续数分钟的异步操作：
        1. 连接到底层平台并开始配对
        2. 每生成一次二维码就通过 sink 上报 PairingArtifact
        3. 配对成功后返回 ConnectionHandle；此后状态变化与入站消息继续经 sink 上报

        配对失败或超时时抛出 TransportError。

        参数:
            session_id: 会话 ID
            sink: 事件接收回调
        """
        pass

    def is_allowed(self, sender_id: str) -> bool:
        """
        检查发送者是否在 allow_from 白名单中。

        白名单为空 → 允许所有人（开放模式）。
        """
        allow_list = getattr(self.config, "allow_from", [])
        if not allow_list:
            return True
        return str(sender_id) in allow_list
