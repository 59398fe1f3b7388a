"""
会话生命周期控制器模块 - 驱动每个会话的状态机。

本模块是 relaybot 的"心脏"，负责把传输层与会话对象串起来：

  SessionRegistry.create() → controller.start(session)
      ├─ 配对任务：transport.open() → 二维码事件 → 配对成功 / 失败
      └─ 分发器：PeerDispatcher（每联系人一条串行 lane）

  传输事件 → handle_event()
      ├─ PairingArtifact → session.mark_qr_ready()
      ├─ StateChange     → session.apply_state()，进入异常状态时自动 reclaim
      │                    disconnected → session.mark_transport_lost()，停止分发器
      └─ InboundMessage  → dispatcher.publish() → session.on_inbound_message()

  SessionRegistry.remove() → controller.stop(session)
      → 取消配对任务 → 停止分发器 → session.close()

【错误处理约定】
- 建立连接失败：会话进入 error，记录诊断信息，不自动重试
- reclaim 失败：只记录日志，状态保持不变，等待传输层下一次状态上报
- 连接断开：会话进入 error 并释放句柄，不自动重连，需删除后重新创建
- 分发流水线中的任何错误都不会向传输层抛出

【Java 开发者类比】
- 类似于 Spring 中协调多个 Bean 的编排 Service
- 配对任务类似于 CompletableFuture.supplyAsync(...).whenComplete(...)
"""

import asyncio
import functools

from loguru import logger

from relaybot.agent.completion import CompletionDetector
from relaybot.agent.responder import ResponderGateway
from relaybot.bus.events import InboundMessage, PairingArtifact, StateChange, TransportEvent
from relaybot.bus.queue import PeerDispatcher
from relaybot.config.schema import SessionsConfig
from relaybot.config.store import AIProfileStore
from relaybot.session.manager import RECLAIMABLE_STATES, Session, SessionStatus
from relaybot.transport.base import BaseTransport

# 传输层在连接断开（非主动关闭）时上报的状态，见 WhatsAppBridgeTransport._read_loop
TRANSPORT_LOST_STATE = "disconnected"


class SessionLifecycleController:
    """
    会话生命周期控制器。

    属性:
        transport: 传输层实现（如 WhatsAppBridgeTransport）
        responder: AI 应答网关（所有会话共享，无状态）
        profiles: AI 画像存储
        settings: 会话运行参数
        logout_on_close: 关闭会话时是否先注销登录
        completion_detector: 对话完成检测器（可选）
        _pairing_tasks: 进行中的配对任务 {session_id: asyncio.Task}
        _dispatchers: 每个会话的入站分发器 {session_id: PeerDispatcher}
    """

    def __init__(
        self,
        transport: BaseTransport,
        responder: ResponderGateway,
        profiles: AIProfileStore,
        settings: SessionsConfig | None = None,
        logout_on_close: bool = True,
        completion_detector: CompletionDetector | None = None,
    ):
        self.transport = transport
        self.responder = responder
        self.profiles = profiles
        self.settings = settings or SessionsConfig()
        self.logout_on_close = logout_on_close
        self.completion_detector = completion_detector

        self._pairing_tasks: dict[str, asyncio.Task] = {}
        self._dispatchers: dict[str, PeerDispatcher] = {}

    def build_session(self, session_id: str) -> Session:
        """构造一个处于 initializing 状态的会话（尚未登记、尚未配对）。"""
        return Session(
            session_id,
            responder=self.responder,
            profiles=self.profiles,
            settings=self.settings,
            completion_detector=self.completion_detector,
        )

    def start(self, session: Session) -> None:
        """
        启动会话：创建入站分发器，并在后台开始配对。

        必须在事件循环内调用；本方法本身不会等待配对完成。
        """
        dispatcher = PeerDispatcher(
            functools.partial(self._dispatch, session),
            maxsize=self.settings.inbox_size,
            name=session.id,
        )
        dispatcher.start()
        self._dispatchers[session.id] = dispatcher
        self._pairing_tasks[session.id] = asyncio.create_task(self._pair(session))

    async def _pair(self, session: Session) -> None:
        """
        配对任务：调用 transport.open() 直到配对成功或失败。

        - 成功：会话接管连接句柄，进入 connected
        - 失败：会话进入 error（不重试），分发器随之停止
        - 会话在配对期间已被关闭：立即关闭刚拿到的连接句柄
        """
        sink = functools.partial(self.handle_event, session)
        try:
            handle = await self.transport.open(session.id, sink)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            session.mark_error(str(e) or e.__class__.__name__)
            dispatcher = self._dispatchers.pop(session.id, None)
            if dispatcher:
                await dispatcher.stop()
            return
        finally:
            if self._pairing_tasks.get(session.id) is asyncio.current_task():
                del self._pairing_tasks[session.id]

        if not session.mark_connected(handle):
            logger.warning(f"[{session.id}] Paired after session left pairing ({session.status.value}), closing")
            try:
                await handle.close()
            except Exception as e:
                logger.error(f"[{session.id}] Error closing orphaned connection: {e}")

    async def handle_event(self, session: Session, event: TransportEvent) -> None:
        """
        处理传输层上报的事件（作为 sink 传给 transport.open）。

        已关闭会话的事件一律忽略。
        """
        if session.status is SessionStatus.CLOSED:
            logger.debug(f"[{session.id}] Ignoring {type(event).__name__} for closed session")
            return

        if isinstance(event, PairingArtifact):
            session.mark_qr_ready(event.artifact)

        elif isinstance(event, StateChange):
            await self._on_state_change(session, event)

        elif isinstance(event, InboundMessage):
            dispatcher = self._dispatchers.get(session.id)
            if dispatcher is None:
                logger.warning(f"[{session.id}] No dispatcher, dropping message from {event.peer_id}")
                return
            await dispatcher.publish(event)

    async def _on_state_change(self, session: Session, event: StateChange) -> None:
        logger.info(f"[{session.id}] Session state: {event.state}")
        if event.normalized == TRANSPORT_LOST_STATE:
            if await session.mark_transport_lost("bridge disconnected"):
                dispatcher = self._dispatchers.pop(session.id, None)
                if dispatcher:
                    await dispatcher.stop()
            return

        new_status = session.apply_state(event.normalized)
        if new_status in RECLAIMABLE_STATES:
            await self.reclaim(session)

    async def reclaim(self, session: Session) -> bool:
        """
        在异常状态下夺回主控权。失败只记录日志。

        返回:
            True 表示 reclaim 调用成功
        """
        try:
            await session.reclaim()
        except Exception as e:
            logger.error(f"[{session.id}] Reclaim failed: {e}")
            return False
        logger.info(f"[{session.id}] Reclaimed session")
        return True

    async def _dispatch(self, session: Session, msg: InboundMessage) -> None:
        await session.on_inbound_message(msg.peer_id, msg.text)

    async def stop(self, session: Session) -> None:
        """
        停止会话：取消配对、停止分发器、关闭会话（含连接句柄）。

        正在处理的消息允许执行完，其发送会因会话已关闭而失败并被记录。
        """
        task = self._pairing_tasks.pop(session.id, None)
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        dispatcher = self._dispatchers.pop(session.id, None)
        if dispatcher:
            await dispatcher.stop()

        await session.close(logout=self.logout_on_close)

    def dispatcher_for(self, session_id: str) -> PeerDispatcher | None:
        """获取会话的分发器（调试 / 测试用）。"""
        return self._dispatchers.get(session_id)
