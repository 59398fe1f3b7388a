"""
管理 HTTP 接口模块 - 会话核心对外暴露的窄接口。

供状态面板 / 管理后台调用（认证、页面渲染不在本模块职责内）：

  GET    /sessions                    会话快照列表
  POST   /sessions                    创建会话（可指定 sessionId，幂等）
  GET    /sessions/{id}               单个会话状态
  GET    /sessions/{id}/qr            配对二维码（不可用时 404）
  DELETE /sessions/{id}               关闭并删除会话
  POST   /sessions/{id}/messages      主动发送消息（未连接 409，发送失败 502）
  GET    /config                      读取 AI 画像
  PUT    /config                      修改 AI 画像（下一条消息分发时生效）

【Java 开发者类比】
- create_app() 类似于 Spring Boot 的 @RestController 配置类
- 异常处理器类似于 @ControllerAdvice + @ExceptionHandler
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from relaybot import __version__
from relaybot.config.store import AIProfileStore
from relaybot.errors import (
    DeliveryError,
    PairingArtifactUnavailableError,
    SessionNotConnectedError,
    SessionNotFoundError,
)
from relaybot.session.manager import SessionRegistry


class _CamelModel(BaseModel):
    """请求体统一接受 camelCase 键名（也兼容 snake_case）。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionRequest(_CamelModel):
    session_id: str | None = None


class SendMessageRequest(_CamelModel):
    peer_id: str = Field(min_length=1)
    text: str = Field(min_length=1)


class ProfileUpdateRequest(_CamelModel):
    business_name: str | None = None
    industry: str | None = None
    instructions: str | None = None


def _profile_dict(store: AIProfileStore) -> dict[str, str]:
    profile = store.get()
    return {
        "businessName": profile.business_name,
        "industry": profile.industry,
        "instructions": profile.instructions,
    }


def create_app(registry: SessionRegistry, profiles: AIProfileStore) -> FastAPI:
    """
    创建管理接口应用。

    应用关闭时（lifespan 结束）会关闭注册表中的全部会话。

    参数:
        registry: 会话注册表
        profiles: AI 画像存储
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, closing all sessions...")
        await registry.close_all()

    app = FastAPI(title="relaybot", version=__version__, lifespan=lifespan)

    # ── 异常映射 ──────────────────────────────────────────────

    @app.exception_handler(SessionNotFoundError)
    async def _not_found(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"error": "Session not found"})

    @app.exception_handler(PairingArtifactUnavailableError)
    async def _qr_unavailable(request: Request, exc: PairingArtifactUnavailableError):
        return JSONResponse(status_code=404, content={"error": "QR code not available"})

    @app.exception_handler(SessionNotConnectedError)
    async def _not_connected(request: Request, exc: SessionNotConnectedError):
        return JSONResponse(status_code=409, content={"error": str(exc), "status": exc.status})

    @app.exception_handler(DeliveryError)
    async def _delivery_failed(request: Request, exc: DeliveryError):
        return JSONResponse(status_code=502, content={"error": str(exc)})

    # ── 会话 ──────────────────────────────────────────────────

    @app.get("/sessions")
    async def list_sessions():
        return {"sessions": [s.to_dict() for s in registry.list_all()]}

    @app.post("/sessions", status_code=201)
    async def create_session(body: CreateSessionRequest | None = None):
        session = registry.create(body.session_id if body else None)
        return session.summary().to_dict()

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        return registry.get(session_id).summary().to_dict()

    @app.get("/sessions/{session_id}/qr")
    async def get_qr(session_id: str):
        session = registry.get(session_id)
        return {"qrCode": session.get_pairing_artifact(), "status": session.status.value}

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str):
        removed = await registry.remove(session_id)
        return {"success": True, "removed": removed}

    @app.post("/sessions/{session_id}/messages")
    async def send_message(session_id: str, body: SendMessageRequest):
        await registry.get(session_id).deliver(body.peer_id, body.text)
        return {"success": True}

    # ── AI 画像 ───────────────────────────────────────────────

    @app.get("/config")
    async def get_config():
        return _profile_dict(profiles)

    @app.put("/config")
    async def update_config(body: ProfileUpdateRequest):
        profiles.update(**body.model_dump())
        return _profile_dict(profiles)

    return app
