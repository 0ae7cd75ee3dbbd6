# core/relay_client.py
"""
Client for the Holded relay.

The API key lives in a RelaySession passed to every call; it is kept
in memory only.
"""

import aiohttp
import logging
from typing import Any, Optional

from core.relay import CREDENTIAL_HEADER

logger = logging.getLogger(__name__)


class RelayClientError(Exception):
    """Base exception for relay client calls"""
    pass


class MissingApiKeyError(RelayClientError):
    """Raised when a session is created without an API key"""

    def __init__(self):
        super().__init__('No token stored')


class RelayRequestError(RelayClientError):
    """Raised when the relay answers with a non-2xx status"""

    def __init__(self, action: str, status: int, text: str):
        super().__init__(f"{action}: {status} - {text}")
        self.action = action
        self.status = status
        self.text = text


class RelaySession:
    """Relay address and the Holded API key used for every call"""

    def __init__(self, relay_url: str, api_key: Optional[str], timeout: float = 60):
        """
        Args:
            relay_url: Base URL of the relay (e.g. http://127.0.0.1:8787)
            api_key: Holded API key
            timeout: Total timeout of one call, seconds

        Raises:
            MissingApiKeyError: api_key is empty
        """
        if not api_key:
            raise MissingApiKeyError()
        self.relay_url = relay_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    def url(self, path: str) -> str:
        return f"{self.relay_url}{path}"

    def headers(self) -> dict:
        return {CREDENTIAL_HEADER: self.api_key}

    def __repr__(self):
        # Never expose the key
        return f"RelaySession(relay_url={self.relay_url!r})"


async def _call(session: RelaySession, method: str, path: str, action: str) -> Any:
    """
    Sends one request to the relay

    Returns:
        Any: Parsed JSON body

    Raises:
        RelayRequestError: non-2xx response
    """
    url = session.url(path)
    logger.debug(f"➡️ {method} {url}")

    async with aiohttp.ClientSession() as http:
        async with http.request(
            method,
            url,
            headers=session.headers(),
            timeout=aiohttp.ClientTimeout(total=session.timeout)
        ) as response:

            if not 200 <= response.status < 300:
                text = await response.text(errors='replace')
                logger.error(f"❌ {action}: {response.status} - {text}")
                raise RelayRequestError(action, response.status, text)

            return await response.json(content_type=None)


async def get_employees(session: RelaySession) -> list:
    """Lists every employee (the relay aggregates all pages)"""
    return await _call(session, 'GET', '/api/employees', 'Error fetching employees')


async def get_employee_times(session: RelaySession, employee_id: str) -> Any:
    """Lists the time entries of one employee"""
    return await _call(
        session, 'GET', f'/api/employees/{employee_id}/times', 'Error fetching employee times'
    )


async def clock_in(session: RelaySession, employee_id: str) -> Any:
    return await _call(session, 'POST', f'/api/employees/{employee_id}/clockin', 'Error clocking in')


async def clock_out(session: RelaySession, employee_id: str) -> Any:
    return await _call(session, 'POST', f'/api/employees/{employee_id}/clockout', 'Error clocking out')
