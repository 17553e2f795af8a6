"""Conversation orchestration: intent dispatch and the settings hand-off"""

from .orchestrator import (
    APOLOGY,
    EXPIRED,
    INTENT_HANDLERS,
    SPECIAL_ENTITIES,
    ConversationOrchestrator,
    IntentClassifier,
)

__all__ = [
    'APOLOGY',
    'EXPIRED',
    'INTENT_HANDLERS',
    'SPECIAL_ENTITIES',
    'ConversationOrchestrator',
    'IntentClassifier',
]
