"""
会话管理器实现模块 - WhatsApp 会话对象与会话注册表。

本模块包含两个核心类：
- Session：单条 WhatsApp 连接，持有连接句柄、配对二维码、状态以及按联系人划分的对话缓冲区
- SessionRegistry：会话注册表，负责会话的创建、查找、快照列表与删除

【会话状态机】
  initializing ──二维码──▶ qr_ready ──配对成功──▶ connected
       │                      │                     │  ▲
       └──────建立失败────────┴──▶ error            │  │ CONNECTED
                                                    ▼  │
                                conflict / unpaired / unlaunched（自动 reclaim）
  任意状态 ──显式关闭──▶ closed

- error 与 closed 没有自动出口：error 需要运维删除后重建
- 连接句柄在 connected 及可夺回的异常状态下存在，其余状态下为 None

【Java 开发者类比】
- Session 类似于一个有状态的 Spring Bean（prototype 作用域），持有 java.sql.Connection
- SessionRegistry 类似于一个 ConcurrentHashMap<String, Session> 加上生命周期钩子
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from loguru import logger

from relaybot.agent.completion import CompletionDetector
from relaybot.agent.responder import DEGRADED_SERVICE_NOTICE, ResponderGateway
from relaybot.config.schema import SessionsConfig
from relaybot.config.store import AIProfileStore
from relaybot.errors import (
    DeliveryError,
    PairingArtifactUnavailableError,
    RelayBotError,
    SessionNotConnectedError,
    SessionNotFoundError,
)
from relaybot.session.conversation import ConversationBuffer
from relaybot.transport.base import ConnectionHandle
from relaybot.utils.helpers import new_session_id, truncate_string

if TYPE_CHECKING:
    from relaybot.session.lifecycle import SessionLifecycleController


class SessionStatus(str, Enum):
    """会话状态。值即对外展示的小写字符串。"""

    INITIALIZING = "initializing"
    QR_READY = "qr_ready"
    CONNECTED = "connected"
    CONFLICT = "conflict"
    UNPAIRED = "unpaired"
    UNLAUNCHED = "unlaunched"
    ERROR = "error"
    CLOSED = "closed"


# 传输层上报后需要自动 reclaim 的异常状态
RECLAIMABLE_STATES = frozenset({SessionStatus.CONFLICT, SessionStatus.UNPAIRED, SessionStatus.UNLAUNCHED})

# 持有连接句柄的状态
HANDLE_STATES = frozenset({SessionStatus.CONNECTED}) | RECLAIMABLE_STATES

# 配对阶段的状态
PAIRING_STATES = frozenset({SessionStatus.INITIALIZING, SessionStatus.QR_READY})


@dataclass(frozen=True)
class SessionSummary:
    """会话的时间点快照，供状态面板 / 管理接口使用。"""

    id: str
    status: SessionStatus
    has_pairing_artifact: bool
    last_error: str | None
    conversations: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "hasQrCode": self.has_pairing_artifact,
            "error": self.last_error,
            "connectedChats": self.conversations,
            "createdAt": self.created_at.isoformat(),
        }


class Session:
    """
    单条 WhatsApp 会话。

    状态迁移方法（mark_* / apply_state）由生命周期控制器调用；
    deliver / get_status / get_pairing_artifact 面向外部调用方；
    on_inbound_message 只由传输事件路径调用。

    属性:
        id: 会话 ID（创建后不可变）
        status: 当前状态
        pairing_artifact: 配对二维码（仅 qr_ready 状态下存在）
        handle: 连接句柄（由会话独占）
        conversations: 对话缓冲区字典 {peer_id: ConversationBuffer}
        last_error: 进入 error 状态时记录的诊断信息
    """

    def __init__(
        self,
        session_id: str,
        responder: ResponderGateway,
        profiles: AIProfileStore,
        settings: SessionsConfig | None = None,
        completion_detector: CompletionDetector | None = None,
    ):
        self.id = session_id
        self.responder = responder
        self.profiles = profiles
        self.settings = settings or SessionsConfig()
        self.completion_detector = completion_detector

        self.status = SessionStatus.INITIALIZING
        self.pairing_artifact: str | None = None
        self.handle: ConnectionHandle | None = None
        self.conversations: dict[str, ConversationBuffer] = {}
        self.last_error: str | None = None
        self.created_at = datetime.now()

        self._reset_tasks: dict[str, asyncio.Task] = {}  # 对话完成后的延迟清理任务

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, status={self.status.value!r})"

    # ------------------------------------------------------------------
    # 状态迁移（由生命周期控制器驱动）
    # ------------------------------------------------------------------

    def mark_qr_ready(self, artifact: str) -> bool:
        """
        记录新的配对二维码，进入 qr_ready。

        二维码刷新时会直接覆盖旧的；配对阶段之外收到的二维码被忽略。
        """
        if self.status not in PAIRING_STATES:
            logger.debug(f"[{self.id}] Ignoring QR in state {self.status.value}")
            return False
        self.pairing_artifact = artifact
        self.status = SessionStatus.QR_READY
        logger.info(f"[{self.id}] QR ready for scanning")
        return True

    def mark_connected(self, handle: ConnectionHandle) -> bool:
        """
        配对完成，接管连接句柄。

        返回:
            False 表示会话已不在配对阶段（如已被关闭），调用方需自行关闭 handle
        """
        if self.status not in PAIRING_STATES:
            return False
        self.handle = handle
        self.pairing_artifact = None
        self.status = SessionStatus.CONNECTED
        logger.info(f"[{self.id}] Session is ready")
        return True

    def mark_error(self, message: str) -> bool:
        """建立连接失败，进入 error 并记录诊断信息。不会自动重试。"""
        if self.status not in PAIRING_STATES:
            return False
        self.pairing_artifact = None
        self.last_error = message
        self.status = SessionStatus.ERROR
        logger.error(f"[{self.id}] Failed to create session: {message}")
        return True

    def apply_state(self, state: str) -> SessionStatus | None:
        """
        应用传输层上报的状态（已规范化为小写）。

        只有持有连接句柄的会话才会响应：
        - "connected" → connected（异常状态恢复）
        - "conflict" / "unpaired" / "unlaunched" → 对应的异常状态
        - 其他状态只记录日志

        返回:
            迁移后的新状态；未发生迁移时返回 None
        """
        if self.status not in HANDLE_STATES:
            logger.debug(f"[{self.id}] Ignoring state {state!r} in {self.status.value}")
            return None

        try:
            target = SessionStatus(state)
        except ValueError:
            target = None

        if target is not SessionStatus.CONNECTED and target not in RECLAIMABLE_STATES:
            logger.warning(f"[{self.id}] Unhandled transport state: {state}")
            return None

        if target is not self.status:
            logger.info(f"[{self.id}] State {self.status.value} -> {target.value}")
            self.status = target
        return target

    async def mark_transport_lost(self, message: str) -> bool:
        """
        连接句柄所在的传输通道已断开：释放并关闭句柄，进入 error。

        与 close() 不同，会话仍保留在注册表中，状态与错误信息可供查询。

        返回:
            False 表示会话当前并不持有连接句柄（配对中或已关闭），未做任何改动
        """
        if self.status not in HANDLE_STATES:
            return False

        handle, self.handle = self.handle, None
        self.last_error = message
        self.status = SessionStatus.ERROR
        logger.error(f"[{self.id}] Transport lost: {message}")

        if handle is not None:
            try:
                await handle.close()
            except Exception as e:
                logger.error(f"[{self.id}] Error closing lost connection: {e}")
        return True

    # ------------------------------------------------------------------
    # 对外操作
    # ------------------------------------------------------------------

    def get_status(self) -> tuple[SessionStatus, str | None]:
        """返回 (状态, 最近一次错误信息)。"""
        return self.status, self.last_error

    def get_pairing_artifact(self) -> str:
        """
        获取配对二维码。

        异常:
            PairingArtifactUnavailableError: 当前没有可用的二维码
        """
        if self.status is not SessionStatus.QR_READY or not self.pairing_artifact:
            raise PairingArtifactUnavailableError(self.id)
        return self.pairing_artifact

    async def deliver(self, peer_id: str, text: str) -> None:
        """
        通过连接句柄向联系人发送消息。

        异常:
            SessionNotConnectedError: 会话不在 connected 状态
            DeliveryError: 底层发送失败（会话状态不变，不重试）
        """
        handle = self.handle
        if self.status is not SessionStatus.CONNECTED or handle is None:
            raise SessionNotConnectedError(self.id, self.status.value)

        try:
            await handle.send(peer_id, text)
        except Exception as e:
            logger.error(f"[{self.id}] sendText error to {peer_id}: {e}")
            raise DeliveryError(f"Failed to deliver message to {peer_id}: {e}") from e

        logger.info(f"[{self.id}] Replied to {peer_id}")

    async def reclaim(self) -> None:
        """在异常状态下夺回账号主控权。不改变连接句柄，也不直接改变状态。"""
        handle = self.handle
        if handle is None:
            raise SessionNotConnectedError(self.id, self.status.value)
        await handle.reclaim()

    # ------------------------------------------------------------------
    # 消息分发
    # ------------------------------------------------------------------

    async def on_inbound_message(self, peer_id: str, text: str) -> None:
        """
        处理一条入站消息（同一联系人的调用由分发器保证串行）。

        流程：
        1. 去除首尾空白后为空 → 直接丢弃
        2. 惰性获取 / 创建该联系人的对话缓冲区，追加 user 消息
        3. 调用应答网关（完整历史 + 本轮输入）
        4. 应答失败时替换为固定降级提示
        5. 发送回复（失败只记录日志），无论发送结果如何都追加 assistant 消息
        6. 按高低水位截断；若检测到对话完成，延迟清除该联系人的历史
        """
        text = (text or "").strip()
        if not text:
            return

        buffer = self._conversation_for(peer_id)
        buffer.add_message("user", text)
        logger.debug(f"[{self.id}] Message from {peer_id}: {truncate_string(text, 80)}")

        outcome = await self.responder.try_respond(self.profiles.get(), buffer.get_history(), text)
        if not outcome.ok:
            logger.warning(f"[{self.id}] Responder failed for {peer_id}: {outcome.error}")
        reply = outcome.text_or(DEGRADED_SERVICE_NOTICE)

        try:
            await self.deliver(peer_id, reply)
        except RelayBotError as e:
            logger.error(f"[{self.id}] Reply to {peer_id} not delivered: {e}")

        buffer.add_message("assistant", reply)
        buffer.trim()

        if self.completion_detector and self.completion_detector.is_complete(peer_id, reply):
            self._schedule_reset(peer_id)

    def _conversation_for(self, peer_id: str) -> ConversationBuffer:
        # 查找与插入之间没有 await：不存在则插入
        buffer = self.conversations.get(peer_id)
        if buffer is None:
            buffer = ConversationBuffer(
                peer_id=peer_id,
                high_water=self.settings.history_high_water,
                low_water=self.settings.history_low_water,
            )
            self.conversations[peer_id] = buffer
        return buffer

    def get_conversation(self, peer_id: str) -> ConversationBuffer | None:
        """获取联系人的对话缓冲区，不存在时返回 None（不会创建）。"""
        return self.conversations.get(peer_id)

    def drop_conversation(self, peer_id: str) -> bool:
        """删除联系人的对话缓冲区。返回 True 表示确实删除了。"""
        return self.conversations.pop(peer_id, None) is not None

    def _schedule_reset(self, peer_id: str) -> None:
        """对话完成后延迟清除历史，给最后一条回复留出送达时间。"""
        if self.status is SessionStatus.CLOSED:
            # 关闭时已清空对话并取消全部清理任务，此后不再登记新的
            return
        previous = self._reset_tasks.pop(peer_id, None)
        if previous:
            previous.cancel()
        self._reset_tasks[peer_id] = asyncio.create_task(
            self._reset_later(peer_id, self.settings.conversation_reset_delay_s)
        )

    async def _reset_later(self, peer_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            if self.drop_conversation(peer_id):
                logger.info(f"[{self.id}] Conversation with {peer_id} completed, history cleared")
        finally:
            if self._reset_tasks.get(peer_id) is asyncio.current_task():
                del self._reset_tasks[peer_id]

    # ------------------------------------------------------------------
    # 关闭与快照
    # ------------------------------------------------------------------

    async def close(self, logout: bool = False) -> None:
        """
        关闭会话：释放并关闭连接句柄、清空对话、取消延迟清理任务。

        关闭过程中的错误只记录日志，不向外抛出。重复调用无副作用。

        参数:
            logout: 关闭前是否先注销 WhatsApp 登录
        """
        if self.status is SessionStatus.CLOSED:
            return

        # 先在同一步内释放句柄并切换状态，任何时刻都不会观察到 closed 且持有句柄
        handle, self.handle = self.handle, None
        self.pairing_artifact = None
        self.status = SessionStatus.CLOSED

        for task in self._reset_tasks.values():
            task.cancel()
        self._reset_tasks.clear()
        self.conversations.clear()

        if handle is None:
            logger.info(f"[{self.id}] Session closed")
            return

        if logout:
            try:
                await handle.logout()
            except Exception as e:
                logger.error(f"[{self.id}] Error logging out session: {e}")

        try:
            await handle.close()
            logger.info(f"[{self.id}] Session closed")
        except Exception as e:
            logger.error(f"[{self.id}] Error closing session: {e}")

    def summary(self) -> SessionSummary:
        """生成当前时间点的会话快照。"""
        return SessionSummary(
            id=self.id,
            status=self.status,
            has_pairing_artifact=self.pairing_artifact is not None,
            last_error=self.last_error,
            conversations=len(self.conversations),
            created_at=self.created_at,
        )


class SessionRegistry:
    """
    会话注册表 - 管理所有会话的创建、查找与删除。

    所有对 _sessions 的读写都在事件循环线程内同步完成（中间没有 await），
    因此并发的创建 / 查找 / 列表操作不会观察到半构造的会话。

    属性:
        controller: 生命周期控制器，负责配对、事件处理与关闭
        _sessions: 会话字典 {session_id: Session}
    """

    def __init__(self, controller: SessionLifecycleController):
        self.controller = controller
        self._sessions: dict[str, Session] = {}

    def create(self, session_id: str | None = None) -> Session:
        """
        创建会话并开始异步配对。

        幂等：ID 已存在时直接返回已有会话，不重复创建。
        新会话先以 initializing 状态登记到注册表，再启动配对，
        因此并发的 get() 能立即看到它。

        参数:
            session_id: 会话 ID，为空时自动生成

        返回:
            新建或已存在的 Session
        """
        session_id = session_id or new_session_id()

        existing = self._sessions.get(session_id)
        if existing is not None:
            logger.warning(f"Session {session_id} already exists")
            return existing

        logger.info(f"Creating new WhatsApp session: {session_id}")
        session = self.controller.build_session(session_id)
        self._sessions[session_id] = session
        self.controller.start(session)
        return session

    def get(self, session_id: str) -> Session:
        """
        按 ID 查找会话。

        异常:
            SessionNotFoundError: 会话不存在
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_all(self) -> list[SessionSummary]:
        """返回所有会话的时间点快照列表（按创建时间排序）。"""
        return sorted((s.summary() for s in self._sessions.values()), key=lambda s: s.created_at)

    async def remove(self, session_id: str) -> bool:
        """
        关闭并删除会话。会话不存在时什么也不做。

        连接句柄在会话从注册表中移除之前关闭。

        返回:
            True 表示会话存在并已删除
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False

        await self.controller.stop(session)
        self._sessions.pop(session_id, None)
        logger.info(f"Session {session_id} deleted")
        return True

    async def close_all(self) -> None:
        """关闭所有会话（进程退出时调用）。"""
        for session_id in list(self._sessions):
            await self.remove(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
