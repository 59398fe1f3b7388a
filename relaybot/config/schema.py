"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 relaybot 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── ai        - AI 应答的业务画像（商家名称、行业、附加指令）
├── provider  - 文本补全服务配置（API Key、地址、模型、超时）
├── bridge    - WhatsApp 桥接服务配置（WebSocket 地址、令牌、配对超时）
├── sessions  - 会话运行参数（历史水位、收件箱容量、对话结束检测）
└── gateway   - 管理 HTTP 接口配置（主机和端口）

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings


class AIProfile(BaseModel):
    """
    AI 应答器的业务画像。

    business_name 为空表示尚未完成设置，此时应答网关直接返回
    "请先完成设置"的固定提示，不会调用任何网络服务。
    """
    model_config = ConfigDict(frozen=True)  # 不可变：读取方拿到的是快照

    business_name: str = ""  # 商家名称
    industry: str = ""  # 所属行业
    instructions: str = ""  # 额外的回复指令（直接拼接进系统提示词）

    @property
    def is_complete(self) -> bool:
        """是否已完成最基本的设置（商家名称非空）。"""
        return bool(self.business_name.strip())


class ProviderConfig(BaseModel):
    """文本补全服务配置。默认对接 DeepSeek 的 OpenAI 兼容接口。"""
    kind: Literal["http", "litellm"] = "http"  # http：直连 OpenAI 兼容接口；litellm：经 LiteLLM 路由
    api_key: str = ""  # Bearer Token，为空时回退到 DEEPSEEK_API_KEY 环境变量
    api_base: str = "https://api.deepseek.com/v1"  # 接口基础地址
    model: str = "deepseek-chat"  # 模型名称
    temperature: float = 0.7  # 采样温度
    max_tokens: int = 1024  # 回复最大 token 数
    timeout_s: float = 60.0  # 单次请求超时（秒），超时按应答失败处理

    @property
    def resolved_api_key(self) -> str:
        """配置中的 api_key，未配置时读取环境变量 DEEPSEEK_API_KEY。"""
        return self.api_key or os.environ.get("DEEPSEEK_API_KEY", "")


class BridgeConfig(BaseModel):
    """WhatsApp 桥接服务配置。每个会话都会单独建立一条到桥接服务的 WebSocket 连接。"""
    url: str = "ws://localhost:3001"  # 桥接服务的 WebSocket 地址
    token: str = ""  # 桥接认证令牌（可选但推荐设置）
    pairing_timeout_s: float = 300.0  # 扫码配对超时（秒）
    logout_on_remove: bool = True  # 删除会话时是否先注销 WhatsApp 登录
    send_timeout_s: float = 30.0  # 等待桥接服务确认发送结果的超时（秒）
    allow_from: list[str] = Field(default_factory=list)  # 允许的联系人白名单（为空表示所有人）


class SessionsConfig(BaseModel):
    """会话运行参数。"""
    history_high_water: int = 20  # 对话历史超过该条数时截断
    history_low_water: int = 16  # 截断后保留最近的条数
    inbox_size: int = 100  # 每个会话入站队列的容量
    completion_phrases: list[str] = Field(default_factory=list)  # 回复包含这些短语时视为对话完成
    conversation_reset_delay_s: float = 5.0  # 对话完成后延迟多久清除历史（留出最终消息的送达时间）

    @model_validator(mode="after")
    def _check_watermarks(self) -> "SessionsConfig":
        if not 0 < self.history_low_water <= self.history_high_water:
            raise ValueError("historyLowWater must be positive and not exceed historyHighWater")
        return self


class GatewayConfig(BaseModel):
    """管理 HTTP 接口配置。"""
    host: str = "0.0.0.0"  # 监听地址（0.0.0.0 表示监听所有网卡）
    port: int = 3000  # 监听端口


class Config(BaseSettings):
    """
    relaybot 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: RELAYBOT_
    - 嵌套分隔符: __ (双下划线)
    - 示例: RELAYBOT_PROVIDER__MODEL=deepseek-reasoner 可覆盖 provider.model
    """
    ai: AIProfile = Field(default_factory=AIProfile)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)

    model_config = ConfigDict(
        env_prefix="RELAYBOT_",
        env_nested_delimiter="__"
    )
