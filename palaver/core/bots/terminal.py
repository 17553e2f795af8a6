"""
A bot backend for the terminal, mostly for debugging.
"""

import asyncio
import getpass
import logging
import sys
from typing import Optional, TextIO

from palaver.core.bots.base import Bot

logger = logging.getLogger(__name__)


class TerminalBot(Bot):
    """Talks to whoever is at the keyboard, one line per message"""

    namespace = 'terminal'

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None,
                 user: Optional[str] = None, prompt: str = '> '):
        super().__init__()
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.user = user or getpass.getuser()
        self.prompt = prompt

    async def send_message(self, user: str, text: str) -> None:
        self.stdout.write(f"{text}\n")
        self.stdout.flush()

    async def start(self) -> None:
        """Read lines until EOF, delivering each as a message from the local user."""
        loop = asyncio.get_running_loop()
        while True:
            self.stdout.write(self.prompt)
            self.stdout.flush()
            line = await loop.run_in_executor(None, self.stdin.readline)
            if not line:
                break
            text = line.strip()
            if text:
                self.deliver(self.user, text)
        logger.info("Terminal input closed")
