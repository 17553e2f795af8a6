"""Exceptions raised by the coordination primitives"""


class CoordinationError(Exception):
    """Base class for Spool and named-future failures"""


class WaitTimeout(CoordinationError):
    """A suspension passed its deadline before a value arrived.

    The slot or key it was waiting on has already been released.
    """

    def __init__(self, key, timeout: float):
        super().__init__(f"gave up waiting on {key!r} after {timeout}s")
        self.key = key
        self.timeout = timeout


class TokenError(CoordinationError):
    """A single-assignment token was filled or claimed twice"""


class AlreadyWaiting(CoordinationError):
    """A second concurrent wait was issued for the same Spool key"""
