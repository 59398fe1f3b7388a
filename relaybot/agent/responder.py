"""
AI 应答网关模块 - 把（业务画像, 对话历史, 新输入）变成一条回复文本。

应答网关是无状态适配器，位于会话分发逻辑与补全服务之间：

  会话分发 → ResponderGateway.try_respond() → LLMProvider.chat() → 补全 API
                    ↓
          ResponderOutcome（成功文本 / 失败原因）

【核心约定】
1. 前置条件：画像中 business_name 为空时，直接返回"请先完成设置"的固定提示，
   不发起任何网络调用。这是正常路径，不算失败。
2. 上下文构造：系统提示词（由行业、商家名称、附加指令拼成）
   + 调用方历史的副本 + 新输入作为最后一条 user 消息。
   绝不就地修改调用方传入的 history。
3. 失败收敛：网络错误、非 2xx、空回复都变成 ok=False 的 ResponderOutcome；
   respond() 再统一替换为降级提示，保证聊天渠道永远不会"沉默"。
"""

from dataclasses import dataclass
from typing import Any

from loguru import logger

from relaybot.config.schema import AIProfile, ProviderConfig
from relaybot.providers.base import LLMProvider

# 画像未设置时的固定回复
SETUP_INCOMPLETE_NOTICE = "🤖 Please complete the bot setup first."

# 补全服务不可用时的固定降级回复
DEGRADED_SERVICE_NOTICE = "😓 Our assistant is unavailable right now. Please try again later."

SYSTEM_PROMPT_TEMPLATE = """
You are a WhatsApp assistant for the *{industry}* business named *{business_name}*.
{instructions}
"""


@dataclass(frozen=True)
class ResponderOutcome:
    """
    应答结果（类似 Rust 的 Result）。

    属性:
        ok: 是否成功拿到可发送的回复
        text: 成功时的回复文本
        error: 失败时的诊断信息
    """
    ok: bool
    text: str | None = None
    error: str | None = None

    def text_or(self, fallback: str) -> str:
        """成功时返回回复文本，失败时返回 fallback。"""
        return self.text if self.ok and self.text else fallback


def build_system_prompt(profile: AIProfile) -> str:
    """根据业务画像生成系统提示词。"""
    return SYSTEM_PROMPT_TEMPLATE.format(
        industry=profile.industry,
        business_name=profile.business_name,
        instructions=profile.instructions,
    ).strip()


class ResponderGateway:
    """
    AI 应答网关。

    属性:
        provider: 补全服务提供者
        model: 使用的模型名称
        temperature: 采样温度
        max_tokens: 回复最大 token 数
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ):
        self.provider = provider
        self.model = model or provider.get_default_model()
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_config(cls, provider: LLMProvider, config: ProviderConfig) -> "ResponderGateway":
        """按 provider 配置段创建网关。"""
        return cls(
            provider,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    def build_messages(
        self,
        profile: AIProfile,
        history: list[dict[str, Any]],
        user_input: str,
    ) -> list[dict[str, Any]]:
        """
        构造发给补全服务的完整消息列表。

        返回的是新列表，history 中的每条消息也会复制一份。
        """
        return [
            {"role": "system", "content": build_system_prompt(profile)},
            *({"role": m["role"], "content": m["content"]} for m in history),
            {"role": "user", "content": user_input},
        ]

    async def try_respond(
        self,
        profile: AIProfile,
        history: list[dict[str, Any]],
        user_input: str,
    ) -> ResponderOutcome:
        """
        生成回复，以 ResponderOutcome 形式返回结果，不抛异常。

        参数:
            profile: 当前业务画像快照
            history: 对话历史（只读）
            user_input: 本轮用户输入

        返回:
            ResponderOutcome
        """
        if not profile.is_complete:
            return ResponderOutcome(ok=True, text=SETUP_INCOMPLETE_NOTICE)

        messages = self.build_messages(profile, history, user_input)

        try:
            response = await self.provider.chat(
                messages,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            # 提供者按约定不抛异常，这里兜底第三方实现
            logger.error(f"Responder provider raised: {e}")
            return ResponderOutcome(ok=False, error=str(e))

        if response.is_error:
            return ResponderOutcome(ok=False, error=response.content or "completion failed")

        text = (response.content or "").strip()
        if not text:
            return ResponderOutcome(ok=False, error="empty completion")

        return ResponderOutcome(ok=True, text=text)

    async def respond(
        self,
        profile: AIProfile,
        history: list[dict[str, Any]],
        user_input: str,
    ) -> str:
        """
        生成回复文本。失败时返回固定的降级提示，永远不抛异常。
        """
        outcome = await self.try_respond(profile, history, user_input)
        return outcome.text_or(DEGRADED_SERVICE_NOTICE)
