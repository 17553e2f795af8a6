"""Palaver: a calendar assistant you can talk to from any chat service"""

__version__ = "1.0.0"
