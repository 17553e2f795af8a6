"""Coordination primitives for conversations spread across channels"""

from .errors import AlreadyWaiting, CoordinationError, TokenError, WaitTimeout
from .named_futures import NamedFutures
from .spool import Spool

__all__ = [
    'AlreadyWaiting',
    'CoordinationError',
    'NamedFutures',
    'Spool',
    'TokenError',
    'WaitTimeout',
]
