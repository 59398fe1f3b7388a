"""
LiteLLM 提供者实现模块 - 多 LLM 服务商的统一调用层。

当配置 provider.kind = "litellm" 时使用本提供者。LiteLLM 将 100+ 家服务商
（OpenAI、Anthropic、DeepSeek、通义千问等）的 API 统一为 OpenAI 兼容格式，
模型名带服务商前缀即可路由，例如 "deepseek/deepseek-chat"。
类比 Java 世界：LiteLLM 类似于 JDBC - 一套接口，多种数据库驱动。

错误容错：调用失败时返回 finish_reason="error" 的响应而非抛出异常，
由应答网关统一替换为降级提示。
"""

from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from relaybot.providers.base import LLMProvider, LLMResponse


class LiteLLMProvider(LLMProvider):
    """
    基于 LiteLLM 的补全提供者。

    构造参数：
        api_key: API 密钥
        api_base: 自定义 API 基础 URL（用于代理/网关/本地部署）
        default_model: 默认模型名称（如 "deepseek/deepseek-chat"）
        timeout_s: 单次请求超时（秒）
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "deepseek/deepseek-chat",
        timeout_s: float = 60.0,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.timeout_s = timeout_s

        # 禁用 LiteLLM 的调试日志输出（默认很啰嗦）
        litellm.suppress_debug_info = True
        # 自动丢弃服务商不支持的参数（避免因多余参数导致请求失败）
        litellm.drop_params = True

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": self.timeout_s,
        }
        # 直接传 api_key 比仅依赖环境变量更可靠
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await acompletion(**kwargs)
            return self._parse_response(response)
        except Exception as e:
            logger.error(f"LiteLLM completion failed: {e}")
            return LLMResponse(
                content=f"Error calling LLM: {str(e)}",
                finish_reason="error",
            )

    def _parse_response(self, response: Any) -> LLMResponse:
        """
        将 LiteLLM 的原始响应解析为统一的 LLMResponse 格式。

        response.choices[0].message.content 为空时视为失败。
        """
        choice = response.choices[0]
        content = choice.message.content

        if not content or not content.strip():
            return LLMResponse(content="Empty completion", finish_reason="error")

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=content.strip(),
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """获取默认模型名称。"""
        return self.default_model
