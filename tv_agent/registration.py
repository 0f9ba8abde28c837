"""HTTP registration side-channel.

Registration is posted after every successful socket open until the server
has accepted it once. It is never repeated after that, even across
reconnects, so the server does not accumulate duplicate records.
"""

from __future__ import annotations

import asyncio
import logging

import requests

from tv_agent.codec import registration_fields
from tv_agent.identity import DeviceIdentity

logger = logging.getLogger(__name__)


class RegistrationClient:
    def __init__(
        self,
        url: str,
        identity: DeviceIdentity,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.identity = identity
        self.timeout = timeout
        self.session = session or requests.Session()
        self.confirmed = False
        self.attempts = 0
        self._in_flight = False

    async def register(self) -> bool:
        """Register once. Returns ``True`` when the device is registered."""
        if self.confirmed:
            return True
        if self._in_flight:
            logger.debug("Registration already in flight, skipping")
            return False

        self._in_flight = True
        self.attempts += 1
        try:
            body = await asyncio.to_thread(self._post)
        except requests.RequestException as e:
            logger.warning("HTTP registration failed: %s", e)
            return False
        finally:
            self._in_flight = False

        self.confirmed = True
        logger.info("HTTP registration succeeded: %s", body)
        return True

    def _post(self) -> str:
        resp = self.session.post(self.url, json=registration_fields(self.identity), timeout=self.timeout)
        resp.raise_for_status()
        return resp.text

    def close(self) -> None:
        self.session.close()
