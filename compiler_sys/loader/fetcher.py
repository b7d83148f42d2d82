"""HTTP access used by the network load strategies."""

from __future__ import annotations

from typing import Optional

import requests

from compiler_sys.env import get_compiler_sys_fetch_timeout
from compiler_sys.logging import get_logger

LOGGER = get_logger("HttpFetcher")


class HttpFetcher:
    """Blocking text fetcher backed by a ``requests.Session``.

    The async network strategy runs ``fetch_text`` in the loop's default executor, so a
    single fetcher serves both the sync and async paths.
    """

    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout if timeout is not None else get_compiler_sys_fetch_timeout()
        self._session = session or requests.Session()

    def fetch_text(self, url: str) -> str:
        """Return the body of ``url``.

        Raises
        ------
        requests.RequestException
            On connection errors, timeouts and non-2xx responses.
        """
        LOGGER.debug(f"GET {url}")
        response = self._session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def close(self) -> None:
        self._session.close()
