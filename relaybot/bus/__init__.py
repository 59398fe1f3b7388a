"""
消息总线模块 - 传输层与会话核心之间的事件与分发。

事件流向：
  WhatsApp 桥接 → 传输层 → TransportEvent → 生命周期控制器
      ├─ PairingArtifact / StateChange → 会话状态机
      └─ InboundMessage → PeerDispatcher（每联系人串行 lane）→ 会话分发逻辑

【Java 开发者类比】
- TransportEvent 类似于 Spring 的 ApplicationEvent 子类
- PeerDispatcher 类似于按 key 分区的消息监听容器
"""

from relaybot.bus.events import InboundMessage, PairingArtifact, StateChange, TransportEvent
from relaybot.bus.queue import PeerDispatcher

__all__ = ["InboundMessage", "PairingArtifact", "StateChange", "TransportEvent", "PeerDispatcher"]
