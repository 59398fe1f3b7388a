"""
传输事件类型定义模块 - 定义传输层上报给会话生命周期控制器的数据结构。

本模块定义了三个核心数据类：
- PairingArtifact：配对二维码事件（传输层生成了新的二维码）
- StateChange：连接状态变化事件（如 CONFLICT、UNPAIRED、CONNECTED）
- InboundMessage：入站消息（某个联系人发来的一条文本消息）

这三个类是传输层与会话核心之间流转的"货币"：传输层只负责
把底层协议帧翻译成这些事件并交给 sink 回调，所有状态机逻辑
都在 session.lifecycle 中完成，实现了协议与业务的解耦。

【Java 开发者类比】
- 使用 Python 的 @dataclass 装饰器，等价于 Java 的 record 类或 Lombok 的 @Data
- TransportEvent 联合类型类似于 Java 17 的 sealed interface
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Union


@dataclass
class PairingArtifact:
    """
    配对二维码事件。

    属性:
        session_id: 所属会话 ID
        artifact: 二维码图片的 base64 载荷（已去除 data:image/png;base64, 前缀）
    """

    session_id: str
    artifact: str


@dataclass
class StateChange:
    """
    连接状态变化事件。

    属性:
        session_id: 所属会话 ID
        state: 传输层上报的原始状态字符串（大小写不定，如 "CONFLICT"）
    """

    session_id: str
    state: str

    @property
    def normalized(self) -> str:
        """统一转为小写、去除首尾空白后的状态名。"""
        return self.state.strip().lower()


@dataclass
class InboundMessage:
    """
    入站消息 - 某个联系人通过 WhatsApp 发来的文本消息。

    属性:
        session_id: 收到消息的会话 ID
        peer_id: 联系人标识（完整 JID，回复时原样使用）
        text: 消息正文（未 trim）
        timestamp: 接收时间戳，默认为当前时间
        metadata: 传输层特有的附加数据（如 message_id、is_group）
    """

    session_id: str
    peer_id: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def lane_key(self) -> str:
        """
        生成串行处理通道的键，格式为 "session_id:peer_id"。

        同一会话同一联系人的消息共享一个通道，保证严格按顺序处理。
        """
        return f"{self.session_id}:{self.peer_id}"


# 传输层可能上报的所有事件类型
TransportEvent = Union[PairingArtifact, StateChange, InboundMessage]

# 事件接收回调：传输层每解析出一个事件就 await 一次
EventSink = Callable[[TransportEvent], Awaitable[None]]
