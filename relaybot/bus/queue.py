"""
会话收件箱模块 - 按联系人串行、跨联系人并行的入站消息分发器。

本模块实现了 PeerDispatcher 类，每个会话拥有一个实例。
采用生产者-消费者模式，基于 Python asyncio.Queue 实现：

  传输层 → publish() → inbox 队列 → 路由任务 → 每联系人一条 lane → handler

- 容量有界：publish() 先占用一个槽位，直到该消息被 handler 处理完
  （或被 stop() 丢弃）才归还。未处理完的消息总数达到 maxsize 时
  publish() 会挂起（背压），而不是在 lane 中无限堆积
- 路由任务只做一件事：按 lane_key（会话 + 联系人）把消息放进对应 lane 的队列
- 每条 lane 由独立的消费者任务顺序处理，处理完队列即退出并回收

这样同一联系人的两条消息永远不会交错执行（对话缓冲区的读-改-写
不需要加锁），而不同联系人之间完全并行。

【Java 开发者类比】
- 槽位类似于 java.util.concurrent.Semaphore 限流
- 每条 lane 类似于 Akka 中一个 actor 的 mailbox
- 整体类似按 key 分区的单线程 Executor（Kafka 的分区内有序）
"""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from relaybot.bus.events import InboundMessage

MessageHandler = Callable[[InboundMessage], Awaitable[None]]


class PeerDispatcher:
    """
    单个会话的入站消息分发器。

    属性:
        maxsize: 同时未处理完（排队 + 处理中）的消息上限
        inbox: 入站队列（传输层 → 路由任务）
        handler: 处理单条消息的异步回调（通常是 Session.on_inbound_message 的包装）
        _slots: 容量槽位，publish 时占用，消息处理完或被丢弃时归还
        _lanes: 活跃 lane 字典 {lane_key: 该联系人的待处理队列}
        _lane_tasks: lane 消费者任务字典 {lane_key: asyncio.Task}
        _detached: stop() 后仍在执行当前消息的 lane 任务（保持引用直到结束）
        _router_task: 路由任务句柄
    """

    def __init__(self, handler: MessageHandler, maxsize: int = 100, name: str = "session"):
        self.name = name
        self.handler = handler
        self.maxsize = maxsize
        self.inbox: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self._slots = asyncio.Semaphore(maxsize)
        self._outstanding = 0
        self._lanes: dict[str, asyncio.Queue[InboundMessage]] = {}
        self._lane_tasks: dict[str, asyncio.Task] = {}
        self._detached: set[asyncio.Task] = set()
        self._router_task: asyncio.Task | None = None
        self._running = False

    def start(self) -> None:
        """启动路由任务。重复调用无副作用。"""
        if self._running:
            return
        self._running = True
        self._router_task = asyncio.create_task(self._route())

    async def publish(self, msg: InboundMessage) -> None:
        """
        发布一条入站消息。

        未处理完的消息已达上限时挂起等待；分发器已停止（包括等待期间被停止）
        时直接丢弃并记录日志。

        参数:
            msg: 入站消息
        """
        if self._running:
            await self._slots.acquire()
            if self._running:
                self._outstanding += 1
                self.inbox.put_nowait(msg)
                return
            self._slots.release()
        logger.debug(f"[{self.name}] Dispatcher stopped, dropping message from {msg.peer_id}")

    def _release(self) -> None:
        self._outstanding -= 1
        self._slots.release()

    async def _route(self) -> None:
        """路由循环：从 inbox 取消息，放入对应联系人的 lane。"""
        while self._running:
            try:
                msg = await self.inbox.get()
            except asyncio.CancelledError:
                break
            self._enqueue(msg)

    def _enqueue(self, msg: InboundMessage) -> None:
        # 查找与插入之间没有 await，在事件循环内天然是"不存在则插入"
        key = msg.lane_key
        lane = self._lanes.get(key)
        if lane is None:
            lane = asyncio.Queue()
            self._lanes[key] = lane
            self._lane_tasks[key] = asyncio.create_task(self._drain(key, lane))
        lane.put_nowait(msg)

    async def _drain(self, key: str, lane: asyncio.Queue[InboundMessage]) -> None:
        """
        lane 消费循环：顺序处理该联系人的全部消息，队列清空后回收 lane。

        单条消息处理出错只记录日志，不影响同一 lane 的后续消息。
        """
        try:
            while self._running and not lane.empty():
                msg = lane.get_nowait()
                try:
                    await self.handler(msg)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"[{self.name}] Error handling message from {msg.peer_id}: {e}")
                finally:
                    self._release()
        finally:
            # 判空与删除之间同样没有 await，路由任务不会把消息放进已回收的 lane
            if self._lanes.get(key) is lane:
                del self._lanes[key]
                self._lane_tasks.pop(key, None)

    async def stop(self, cancel_inflight: bool = False) -> None:
        """
        停止分发器：停止路由任务，丢弃所有尚未开始处理的消息。

        默认情况下，每条 lane 上正在处理的那一条消息会被允许执行完
        （其后续发送会因会话已关闭而失败并记录日志），对应任务保留引用直到结束；
        cancel_inflight=True 时连同正在处理的消息一起取消。

        参数:
            cancel_inflight: 是否取消正在处理中的消息
        """
        self._running = False

        tasks = []
        if self._router_task:
            self._router_task.cancel()
            tasks.append(self._router_task)
            self._router_task = None

        # 丢弃 inbox 与各 lane 中排队的消息并归还槽位，lane 处理完当前消息后自然退出
        while not self.inbox.empty():
            self.inbox.get_nowait()
            self._release()
        for lane in self._lanes.values():
            while not lane.empty():
                lane.get_nowait()
                self._release()

        for task in self._lane_tasks.values():
            if cancel_inflight:
                task.cancel()
                tasks.append(task)
            elif not task.done():
                self._detached.add(task)
                task.add_done_callback(self._detached.discard)

        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass  # 取消是预期行为
        self._lanes.clear()
        self._lane_tasks.clear()

    @property
    def pending(self) -> int:
        """inbox 中尚未路由的消息数量。"""
        return self.inbox.qsize()

    @property
    def outstanding(self) -> int:
        """已发布但尚未处理完的消息数量（排队 + 处理中），不超过 maxsize。"""
        return self._outstanding

    @property
    def active_lanes(self) -> int:
        """当前有消息在处理或排队的联系人数量。"""
        return len(self._lanes)
