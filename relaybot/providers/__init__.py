"""
补全服务提供者模块（providers 包）。

模块组成：
- base.py             : LLMProvider 抽象基类和 LLMResponse 数据结构
- http_provider.py    : 直连 OpenAI 兼容接口的 httpx 实现（默认）
- litellm_provider.py : 基于 LiteLLM 的多服务商实现

make_provider() 根据配置中的 provider.kind 选择实现类。
"""

from relaybot.config.schema import ProviderConfig
from relaybot.providers.base import LLMProvider, LLMResponse
from relaybot.providers.http_provider import HttpChatProvider


def make_provider(config: ProviderConfig) -> LLMProvider:
    """
    根据配置创建补全提供者实例。

    参数:
        config: provider 配置段

    返回:
        HttpChatProvider 或 LiteLLMProvider
    """
    if config.kind == "litellm":
        # 延迟导入：只有选用 LiteLLM 时才加载这个较重的依赖
        from relaybot.providers.litellm_provider import LiteLLMProvider
        return LiteLLMProvider(
            api_key=config.resolved_api_key or None,
            api_base=config.api_base or None,
            default_model=config.model,
            timeout_s=config.timeout_s,
        )
    return HttpChatProvider(
        api_key=config.resolved_api_key or None,
        api_base=config.api_base,
        default_model=config.model,
        timeout_s=config.timeout_s,
    )


__all__ = ["LLMProvider", "LLMResponse", "HttpChatProvider", "make_provider"]
