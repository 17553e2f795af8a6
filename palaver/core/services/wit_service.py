"""
Wit.ai intent and entity extraction over its REST API.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

WitResult = Dict[str, Any]


class WitError(Exception):
    """Wit.ai could not parse a message"""


class WitService:
    def __init__(self, access_token: str, api_version: str = "20240304",
                 base_url: str = "https://api.wit.ai"):
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = base_url

        self._request_timeout = 10
        self._max_retries = 2

    async def message(self, text: str) -> WitResult:
        """Classify ``text``, retrying timeouts before giving up."""
        for attempt in range(self._max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        f"{self.base_url}/message",
                        params={"v": self.api_version, "q": text},
                        headers={"Authorization": f"Bearer {self.access_token}"},
                        timeout=aiohttp.ClientTimeout(total=self._request_timeout),
                    ) as response:
                        if response.status == 200:
                            return await response.json()
                        error_text = await response.text()
                        raise WitError(f"Wit API error {response.status}: {error_text}")

            except asyncio.TimeoutError:
                logger.warning(f"Wit API timeout (attempt {attempt + 1}/{self._max_retries + 1})")
                if attempt == self._max_retries:
                    raise WitError("Wit API timed out") from None
                await asyncio.sleep(1)

        raise WitError("Wit API unavailable")


def get_entity(result: WitResult, name: str) -> Optional[Dict[str, Any]]:
    """
    Find the first value Wit extracted for ``name``.

    Older apps report built-ins like ``greetings`` as entities; newer ones
    report them as traits, optionally prefixed with ``wit$``.
    """
    entities = result.get('entities') or {}
    traits = result.get('traits') or {}
    for candidates in (
        entities.get(name),
        entities.get(f"{name}:{name}"),
        traits.get(name),
        traits.get(f"wit${name}"),
    ):
        if candidates:
            return candidates[0]
    return None


def entity_value(result: WitResult, name: str) -> Optional[str]:
    """The value of the first ``name`` entity, or None."""
    entity = get_entity(result, name)
    if entity is not None:
        return entity.get('value')
    if name == 'intent':
        intents = result.get('intents') or []
        if intents:
            return intents[0].get('name')
    return None
