"""
WhatsApp 传输实现 - 基于 Node.js 桥接服务的多会话连接。

架构特点：
- 桥接模式：Python <-> WebSocket <-> Node.js Bridge <-> WhatsApp Web
- 每个会话单独建立一条到桥接服务的 WebSocket 连接，互不影响
- 支持认证令牌（bridge token）进行桥接服务鉴权
- 配对阶段有超时限制（默认 300 秒），超时按建立失败处理，不自动重试

消息协议（Python <-> Bridge，JSON 帧）：
  发往桥接：
  - auth：{"type": "auth", "token": "..."}           认证
  - open：{"type": "open", "session": "<id>"}        启动该会话的 WhatsApp 客户端
  - send：{"type": "send", "id": "<n>", "to": "<jid>", "text": "..."}  发送消息
  - reclaim：{"type": "reclaim"}                      夺回主控权（Use Here）
  - logout：{"type": "logout"}                        注销登录
  来自桥接：
  - qr：{"type": "qr", "qr": "data:image/png;base64,..."}  新二维码
  - status：{"type": "status", "status": "CONNECTED"}      连接状态变化
  - message：{"type": "message", "sender": "<jid>", "pn": "...", "content": "..."}  用户消息
  - sent：{"type": "sent", "id": "<n>", "ok": true, "error": "..."}  发送结果确认
  - error：{"type": "error", "error": "..."}                错误信息

依赖：
- websockets：Python WebSocket 客户端库
- 外部 Node.js 桥接服务（需独立部署运行）
"""

import asyncio
import itertools
import json
import re
from typing import Any

import websockets
from loguru import logger

from relaybot.bus.events import EventSink, InboundMessage, PairingArtifact, StateChange
from relaybot.config.schema import BridgeConfig
from relaybot.errors import PairingTimeoutError, TransportError
from relaybot.transport.base import BaseTransport, ConnectionHandle

# 二维码 data URL 前缀，上报前去掉，只保留 base64 载荷
_DATA_URL_PREFIX = re.compile(r"^data:image/[a-z]+;base64,")


def strip_data_url(qr: str) -> str:
    """去掉二维码字符串的 data URL 前缀。"""
    return _DATA_URL_PREFIX.sub("", qr)


class WhatsAppBridgeHandle(ConnectionHandle):
    """
    单个会话到桥接服务的连接句柄。

    同时负责读取桥接服务发来的帧并翻译成传输事件：
    - 配对阶段：qr 帧 → PairingArtifact；首个 CONNECTED 状态 → 配对完成
    - 配对之后：status 帧 → StateChange；message 帧 → InboundMessage
    """

    def __init__(self, session_id: str, ws: Any, transport: "WhatsAppBridgeTransport"):
        super().__init__(session_id)
        self._ws = ws
        self._transport = transport
        self._sink: EventSink | None = None
        self._reader: asyncio.Task | None = None
        self._ids = itertools.count(1)
        self._pending: dict[str, asyncio.Future] = {}  # 等待发送确认的请求 {id: future}
        self._closed = False
        self.ready: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def config(self) -> BridgeConfig:
        return self._transport.config

    def start_reader(self, sink: EventSink) -> None:
        """启动读帧任务。"""
        self._sink = sink
        self._reader = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        """持续读取桥接服务发来的帧，直到连接断开或句柄关闭。"""
        try:
            async for raw in self._ws:
                try:
                    await self._handle_frame(raw)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"[{self.session_id}] Error handling bridge frame: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[{self.session_id}] WhatsApp bridge connection error: {e}")

        self._fail_pending(TransportError("Bridge connection closed"))
        if not self.ready.done():
            self.ready.set_exception(TransportError("Bridge connection closed during pairing"))
        elif not self._closed and self._sink:
            logger.warning(f"[{self.session_id}] WhatsApp bridge disconnected")
            await self._sink(StateChange(self.session_id, "DISCONNECTED"))

    async def _handle_frame(self, raw: str | bytes) -> None:
        """
        处理从桥接服务收到的一帧。

        参数:
            raw: 原始 JSON 字符串
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[{self.session_id}] Invalid JSON from bridge: {str(raw)[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == "qr":
            # === 新的配对二维码 ===
            qr = data.get("qr") or ""
            if qr and self._sink:
                logger.info(f"[{self.session_id}] QR generated")
                await self._sink(PairingArtifact(self.session_id, strip_data_url(qr)))

        elif msg_type == "status":
            # === 连接状态变化 ===
            status = str(data.get("status") or "")
            logger.info(f"[{self.session_id}] WhatsApp state: {status}")
            if not self.ready.done():
                # 配对阶段只关心是否已连接，其余状态（如 qrReadSuccess）忽略
                if status.lower() == "connected":
                    self.ready.set_result(None)
            elif self._sink:
                await self._sink(StateChange(self.session_id, status))

        elif msg_type == "message":
            await self._handle_message(data)

        elif msg_type == "sent":
            # === 发送结果确认 ===
            future = self._pending.pop(str(data.get("id")), None)
            if future and not future.done():
                if data.get("ok", True):
                    future.set_result(None)
                else:
                    future.set_exception(TransportError(data.get("error") or "send failed"))

        elif msg_type == "error":
            error = data.get("error") or "unknown bridge error"
            logger.error(f"[{self.session_id}] WhatsApp bridge error: {error}")
            if not self.ready.done():
                self.ready.set_exception(TransportError(error))

    async def _handle_message(self, data: dict[str, Any]) -> None:
        """把用户消息帧翻译成 InboundMessage 并交给 sink。"""
        if not self.ready.done() or not self._sink:
            return

        # 新版 LID 格式作为回复地址；手机号样式（pn）仅用于白名单校验
        sender = data.get("sender", "")
        pn = data.get("pn", "")
        user_id = pn if pn else sender
        sender_id = user_id.split("@")[0] if "@" in user_id else user_id

        if not sender:
            return

        if not self._transport.is_allowed(sender_id):
            logger.warning(
                f"[{self.session_id}] Access denied for sender {sender_id}. "
                f"Add them to bridge.allowFrom in config to grant access."
            )
            return

        await self._sink(InboundMessage(
            session_id=self.session_id,
            peer_id=sender,
            text=data.get("content") or "",
            metadata={
                "message_id": data.get("id"),
                "timestamp": data.get("timestamp"),
                "is_group": data.get("isGroup", False),
            },
        ))

    async def _send_frame(self, payload: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError("Connection closed")
        await self._ws.send(json.dumps(payload))

    async def send(self, peer_id: str, text: str) -> None:
        """发送消息并等待桥接服务确认（超时按失败处理）。"""
        request_id = str(next(self._ids))
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send_frame({"type": "send", "id": request_id, "to": peer_id, "text": text})
            await asyncio.wait_for(future, timeout=self.config.send_timeout_s)
        except asyncio.TimeoutError:
            raise TransportError(f"No send confirmation within {self.config.send_timeout_s}s")
        finally:
            self._pending.pop(request_id, None)

    async def reclaim(self) -> None:
        await self._send_frame({"type": "reclaim"})

    async def logout(self) -> None:
        await self._send_frame({"type": "logout"})

    async def close(self) -> None:
        """关闭 WebSocket 并停止读帧任务。重复调用无副作用。"""
        if self._closed:
            return
        self._closed = True
        self._fail_pending(TransportError("Connection closed"))

        if self._reader and self._reader is not asyncio.current_task():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        await self._ws.close()

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()


class WhatsAppBridgeTransport(BaseTransport):
    """
    WhatsApp 传输 - 通过 Node.js 桥接服务通信。

    不直接与 WhatsApp 服务器通信，而是通过中间桥接层；
    桥接层负责 WhatsApp Web 协议与浏览器实例，Python 端只交换 JSON 帧。
    """

    name = "whatsapp"

    def __init__(self, config: BridgeConfig):
        super().__init__(config)
        self.config: BridgeConfig = config

    async def _connect(self) -> Any:
        """建立到桥接服务的 WebSocket 连接。"""
        return await websockets.connect(self.config.url)

    async def open(self, session_id: str, sink: EventSink) -> ConnectionHandle:
        """
        为会话建立连接并完成扫码配对。

        流程：
        1. 建立 WebSocket 连接到桥接服务
        2. 发送认证令牌（如果配置了）和 open 指令
        3. 等待桥接服务上报 CONNECTED（期间二维码经 sink 上报）
        4. 超时、出错或被取消时关闭连接
        """
        logger.info(f"[{session_id}] Connecting to WhatsApp bridge at {self.config.url}...")

        try:
            ws = await self._connect()
        except Exception as e:
            raise TransportError(f"Cannot reach WhatsApp bridge at {self.config.url}: {e}") from e

        handle = WhatsAppBridgeHandle(session_id, ws, self)
        handle.start_reader(sink)

        try:
            if self.config.token:
                await ws.send(json.dumps({"type": "auth", "token": self.config.token}))
            await ws.send(json.dumps({"type": "open", "session": session_id}))
            await asyncio.wait_for(asyncio.shield(handle.ready), timeout=self.config.pairing_timeout_s)
        except asyncio.TimeoutError:
            await handle.close()
            raise PairingTimeoutError(f"Pairing not completed within {self.config.pairing_timeout_s:.0f}s")
        except (TransportError, asyncio.CancelledError):
            await handle.close()
            raise
        except Exception as e:
            await handle.close()
            raise TransportError(str(e)) from e

        logger.info(f"[{session_id}] Connected to WhatsApp bridge")
        return handle
