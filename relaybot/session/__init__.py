"""
会话管理模块 - WhatsApp 会话的完整生命周期。

模块组成：
- conversation.py : 按联系人划分的有界对话缓冲区
- manager.py      : Session（单条连接 + 状态机）与 SessionRegistry（注册表）
- lifecycle.py    : 生命周期控制器（配对、状态冲突夺回、消息分发、关闭）

【架构定位】
会话模块位于传输层与应答网关之间：
- 传输层上报事件，由生命周期控制器驱动会话状态机
- 会话把入站消息写入对话缓冲区，调用应答网关，再经连接句柄回复
"""

from relaybot.session.conversation import ConversationBuffer
from relaybot.session.lifecycle import SessionLifecycleController
from relaybot.session.manager import Session, SessionRegistry, SessionStatus, SessionSummary

__all__ = [
    "ConversationBuffer",
    "Session",
    "SessionLifecycleController",
    "SessionRegistry",
    "SessionStatus",
    "SessionSummary",
]
