"""
AI 应答模块 - 应答网关与对话完成检测。
"""

from relaybot.agent.completion import CompletionDetector, PhraseCompletionDetector
from relaybot.agent.responder import (
    DEGRADED_SERVICE_NOTICE,
    SETUP_INCOMPLETE_NOTICE,
    ResponderGateway,
    ResponderOutcome,
)

__all__ = [
    "ResponderGateway",
    "ResponderOutcome",
    "CompletionDetector",
    "PhraseCompletionDetector",
    "SETUP_INCOMPLETE_NOTICE",
    "DEGRADED_SERVICE_NOTICE",
]
