"""
AI 画像存储模块 - 应答网关读取业务画像的唯一入口。

AIProfileStore 持有当前生效的 AIProfile：
- get() 返回不可变快照，分发逻辑在每次调用应答网关时显式传入
- update() 采用"最后写入者获胜"语义，不做乐观锁
- 可选 on_change 回调，用于把修改持久化回配置文件

配置修改不会重启任何会话，下一条消息分发时自动生效。
"""

from typing import Any, Callable

from loguru import logger

from relaybot.config.schema import AIProfile


class AIProfileStore:
    """进程内的 AI 画像存储。"""

    def __init__(
        self,
        profile: AIProfile | None = None,
        on_change: Callable[[AIProfile], None] | None = None,
    ):
        self._profile = profile or AIProfile()
        self.on_change = on_change

    def get(self) -> AIProfile:
        """获取当前画像快照（AIProfile 是 frozen 模型，可安全共享）。"""
        return self._profile

    def update(self, **fields: Any) -> AIProfile:
        """
        更新画像中的部分字段，返回新的快照。

        字符串字段会去除首尾空白；值为 None 的字段保持不变。

        参数:
            **fields: business_name / industry / instructions 中的任意组合
        """
        changes = {
            k: (v.strip() if isinstance(v, str) else v)
            for k, v in fields.items()
            if v is not None
        }
        unknown = set(changes) - set(AIProfile.model_fields)
        if unknown:
            raise ValueError(f"Unknown AI profile fields: {', '.join(sorted(unknown))}")

        self._profile = self._profile.model_copy(update=changes)
        logger.info(f"AI profile updated: business={self._profile.business_name!r}")

        if self.on_change:
            try:
                self.on_change(self._profile)
            except Exception as e:
                logger.error(f"Failed to persist AI profile: {e}")
        return self._profile
