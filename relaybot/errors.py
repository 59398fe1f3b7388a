"""
异常类型定义模块 - relaybot 对外暴露的类型化失败。

会话注册表 / 会话对象的直接调用方（管理 API、CLI）通过这些异常
区分"找不到会话"、"会话未连接"、"发送失败"等情况；
而消息分发流水线内部是事件驱动的，没有调用方可以上报，
因此在那里这些异常只会被记录日志，不会继续向外抛出。

【Java 开发者类比】
- RelayBotError 相当于项目自定义的 RuntimeException 基类
- 子类继承内置的 LookupError / RuntimeError，方便按语义 catch
"""


class RelayBotError(Exception):
    """relaybot 所有自定义异常的基类。"""


class SessionNotFoundError(RelayBotError, LookupError):
    """指定 ID 的会话不存在（管理 API 映射为 404）。"""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class PairingArtifactUnavailableError(RelayBotError, LookupError):
    """会话当前没有可用的配对二维码（不在 qr_ready 状态）。"""

    def __init__(self, session_id: str):
        super().__init__(f"QR code not available for session {session_id}")
        self.session_id = session_id


class SessionNotConnectedError(RelayBotError, RuntimeError):
    """会话不在 connected 状态，无法发送消息。"""

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is not connected (status: {status})")
        self.session_id = session_id
        self.status = status


class DeliveryError(RelayBotError, RuntimeError):
    """底层传输发送消息失败。会话状态不受影响，也不会重试。"""


class TransportError(RelayBotError, RuntimeError):
    """传输层建立连接 / 配对失败。"""


class PairingTimeoutError(TransportError):
    """在限定时间内没有完成扫码配对。"""
