"""
管理接口模块 - 基于 FastAPI 的会话管理 HTTP 接口。
"""

from relaybot.api.server import create_app

__all__ = ["create_app"]
