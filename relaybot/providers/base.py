"""
文本补全提供者基类定义模块。

本模块定义了与大语言模型交互的核心抽象接口，类似于 Java 中的 Interface + DTO 模式：
- LLMResponse : LLM 的统一响应格式（文本内容、结束原因、token 用量）
- LLMProvider : 抽象基类，定义了所有补全服务提供者必须实现的接口

架构角色：
  入站消息 → 应答网关 → LLMProvider.chat() → 补全 API → LLMResponse → 应答网关

错误约定：
  提供者不向外抛异常。网络错误、非 2xx 状态码、响应体格式错误都会返回
  finish_reason="error" 的 LLMResponse，content 中放诊断信息，
  由应答网关统一判定为失败。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMResponse:
    """
    补全服务的统一响应数据结构。

    属性：
        content: 返回的文本内容（出错时为诊断信息）
        finish_reason: 结束原因（"stop"=正常结束, "length"=达到上限, "error"=出错）
        usage: token 用量统计（prompt_tokens, completion_tokens, total_tokens）
    """
    content: str | None
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        """是否为失败响应。"""
        return self.finish_reason == "error"


class LLMProvider(ABC):
    """
    补全服务提供者抽象基类（类似 Java 的 interface）。

    实现类：
    - HttpChatProvider : 直连 OpenAI 兼容的 /chat/completions 接口（默认，DeepSeek）
    - LiteLLMProvider  : 通过 LiteLLM 路由到任意服务商

    属性：
        api_key: API 密钥（Bearer Token）
        api_base: API 基础 URL
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        发送对话补全请求。

        参数：
            messages: 消息列表，每条消息是 {"role": "system/user/assistant", "content": "..."} 格式
            model: 模型标识符，为空则使用默认模型
            max_tokens: 响应的最大 token 数
            temperature: 采样温度

        返回：
            LLMResponse（失败时 finish_reason="error"）
        """
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """获取该提供者的默认模型名称。"""
        pass
