"""
OpenAI 兼容 HTTP 补全提供者模块。

直接调用 OpenAI 兼容的 POST {api_base}/chat/completions 接口
（默认 DeepSeek：https://api.deepseek.com/v1），使用 Bearer Token 认证。

失败判定（全部转换为 finish_reason="error"，不向外抛异常）：
  - 连接失败 / 超时（httpx.HTTPError）
  - 非 2xx 状态码
  - 响应体不是合法 JSON，或缺少 choices[0].message.content

技术说明：
  - 使用 httpx（Python 的异步 HTTP 客户端，类似 Java 的 OkHttp）发送请求
  - 超时由 httpx 在传输层控制，超时后按应答失败处理，不会卡住分发流水线
  - 可注入 transport 参数（如 httpx.MockTransport），便于测试
"""

from typing import Any

import httpx
from loguru import logger

from relaybot.providers.base import LLMProvider, LLMResponse


class HttpChatProvider(LLMProvider):
    """
    基于 httpx 的 OpenAI 兼容补全提供者。

    使用方式：
        provider = HttpChatProvider(api_key="sk-xxx")
        response = await provider.chat([{"role": "user", "content": "hi"}])

    属性：
        default_model: 默认模型名称
        timeout_s: 单次请求超时（秒）
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str = "https://api.deepseek.com/v1",
        default_model: str = "deepseek-chat",
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key, api_base.rstrip("/"))
        self.default_model = default_model
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def endpoint(self) -> str:
        """补全接口完整地址。"""
        return f"{self.api_base}/chat/completions"

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        payload = {
            "model": model or self.default_model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key or ''}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout_s) as client:
                response = await client.post(self.endpoint, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Completion request failed: {e!r}")
            return LLMResponse(content=f"Error calling completion API: {e!r}", finish_reason="error")

        if not response.is_success:
            logger.error(f"Completion API error {response.status_code}: {response.text[:500]}")
            return LLMResponse(
                content=f"Completion API returned HTTP {response.status_code}",
                finish_reason="error",
            )

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Completion API returned malformed JSON: {response.text[:200]}")
            return LLMResponse(content="Malformed JSON from completion API", finish_reason="error")

        return self._parse_response(data)

    def _parse_response(self, data: Any) -> LLMResponse:
        """
        将 OpenAI 格式的响应字典解析为 LLMResponse。

        data["choices"][0]["message"]["content"] 为空或缺失时视为失败。
        """
        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.error(f"Completion API response missing choices: {str(data)[:200]}")
            return LLMResponse(content="Completion API response missing choices", finish_reason="error")

        if not isinstance(content, str) or not content.strip():
            return LLMResponse(content="Empty completion", finish_reason="error")

        usage = data.get("usage") or {}
        return LLMResponse(
            content=content.strip(),
            finish_reason=choice.get("finish_reason") or "stop",
            usage={
                k: usage[k]
                for k in ("prompt_tokens", "completion_tokens", "total_tokens")
                if isinstance(usage.get(k), int)
            },
        )

    def get_default_model(self) -> str:
        return self.default_model
