"""
对话缓冲区模块 - 单个联系人在单个会话内的有界消息历史。

每个联系人第一次发消息时惰性创建一个 ConversationBuffer，
内部维护 {"role", "content"} 格式的消息列表，直接作为 LLM 上下文使用。

【截断策略（高低水位）】
- 长度超过高水位（默认 20 条）时，只保留最近的低水位条数（默认 16 条）
- 截断只在一整轮对话（user + assistant）都追加完之后进行，
  保证不会出现"有问无答"的半轮历史
- 宁可丢弃早期上下文，也要保留最近的对话

【Java 开发者类比】
- ConversationBuffer 类似于一个带容量上限的 ArrayDeque
- trim() 类似于 LinkedHashMap.removeEldestEntry 的批量版本
"""

from dataclasses import dataclass, field
from datetime import datetime

# 历史长度高水位：超过即截断
DEFAULT_HIGH_WATER = 20
# 截断后保留的条数
DEFAULT_LOW_WATER = 16


@dataclass
class ConversationBuffer:
    """
    单个联系人的对话历史缓冲区。

    属性:
        peer_id: 联系人标识
        history: 消息列表，每条为 {"role": "system/user/assistant", "content": "..."}
        high_water: 截断触发阈值
        low_water: 截断后保留条数
        created_at: 创建时间
        updated_at: 最后更新时间
    """

    peer_id: str
    history: list[dict[str, str]] = field(default_factory=list)
    high_water: int = DEFAULT_HIGH_WATER
    low_water: int = DEFAULT_LOW_WATER
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not 0 < self.low_water <= self.high_water:
            raise ValueError(
                f"low_water must be in (0, high_water], got {self.low_water} / {self.high_water}"
            )

    def add_message(self, role: str, content: str) -> None:
        """
        追加一条消息。

        参数:
            role: 消息角色（'system'、'user'、'assistant'）
            content: 消息文本
        """
        self.history.append({"role": role, "content": content})
        self.updated_at = datetime.now()

    def get_history(self) -> list[dict[str, str]]:
        """返回历史的浅拷贝（每条消息也复制一份），调用方可以随意修改。"""
        return [dict(m) for m in self.history]

    def trim(self) -> bool:
        """
        按高低水位截断历史。

        返回:
            True 表示发生了截断
        """
        if len(self.history) > self.high_water:
            self.history = self.history[-self.low_water:]
            return True
        return False

    def __len__(self) -> int:
        return len(self.history)

