"""Chat backends and the contract they share"""

from .base import Bot, Conversation, ConversationHandler, SpooledConversation
from .facebook import FacebookBot, FacebookError
from .slack import SlackBot, SlackError
from .sms import SMSBot
from .terminal import TerminalBot
from .web import WebBot

__all__ = [
    'Bot',
    'Conversation',
    'ConversationHandler',
    'FacebookBot',
    'FacebookError',
    'SMSBot',
    'SlackBot',
    'SlackError',
    'SpooledConversation',
    'TerminalBot',
    'WebBot',
]
