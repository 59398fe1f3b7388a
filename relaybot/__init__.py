"""
relaybot - 多会话 WhatsApp AI 客服桥接服务

模块概述：
    本文件是 relaybot 包的入口文件（__init__.py），定义了包的元信息。
    relaybot 维护一个或多个到 WhatsApp 的持久连接（会话），
    将用户发来的消息交给可配置的 AI 应答器处理，再把回复发回原聊天窗口。

    整个框架的核心功能包括：
    - 多会话生命周期管理（扫码配对、状态冲突自动夺回、关闭释放）
    - 按联系人隔离的对话历史缓冲区（有上限的滑动窗口）
    - 基于 OpenAI 兼容接口 / LiteLLM 的 AI 应答网关
    - 管理 HTTP 接口与命令行工具
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📱"
