"""
传输层模块 - 会话核心与聊天平台之间的连接抽象。

- base.py     : BaseTransport / ConnectionHandle 抽象接口
- whatsapp.py : 基于 Node.js 桥接服务的 WhatsApp 实现

【二开提示】
接入新平台只需实现 BaseTransport.open() 和对应的 ConnectionHandle，
会话状态机、分发逻辑无需修改。
"""

from relaybot.transport.base import BaseTransport, ConnectionHandle

__all__ = ["BaseTransport", "ConnectionHandle"]
