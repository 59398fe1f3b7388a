"""
对话完成检测模块。

某些业务场景下（例如下单成功、预约完成），一轮对话结束后应清空该联系人的
历史，让下一次咨询从头开始。检测逻辑通过 CompletionDetector 协议注入，
会话只关心"这条回复是否意味着对话已完成"。

内置实现 PhraseCompletionDetector 按配置的短语做不区分大小写的子串匹配；
短语列表为空时永远返回 False（即关闭该功能）。
"""

from typing import Iterable, Protocol


class CompletionDetector(Protocol):
    """对话完成检测器协议。"""

    def is_complete(self, peer_id: str, reply: str) -> bool:
        """reply 是否标志着与 peer_id 的这段对话已完成。"""
        ...


class PhraseCompletionDetector:
    """按固定短语匹配的完成检测器。"""

    def __init__(self, phrases: Iterable[str] = ()):
        self.phrases = [p.lower() for p in phrases if p.strip()]

    def is_complete(self, peer_id: str, reply: str) -> bool:
        if not self.phrases:
            return False
        text = reply.lower()
        return any(p in text for p in self.phrases)
