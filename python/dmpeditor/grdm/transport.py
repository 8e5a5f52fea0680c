"""
The HTTP transport that all GRDM requests go through.

:py:class:`ResilientTransport` executes a request with the ``requests`` library on a
worker thread from its own pool so that callers on the event loop only suspend while
waiting for a response.  Each attempt is bounded by a timeout that starts when a worker
begins sending the request; time spent waiting for a free worker does not count against
it.  Rate-limited responses (HTTP 429) and
network-level failures (timeouts, refused or dropped connections, DNS failures) are
retried after a constant delay until the retry budget is spent.  Every other response,
successful or not, is handed back to the caller to interpret.
"""
import asyncio, logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Union

import requests

from dmpeditor.base.config import get_number, ConfigurationException
from .exceptions import RetriesExhausted

deflogger = logging.getLogger(__name__)

DEF_RETRIES = 5
DEF_TIMEOUT = 10.0
DEF_BACKOFF = 1.0
DEF_MAX_WORKERS = 8

TokenSource = Union[str, Callable[[], str], None]

class ResilientTransport:
    """
    a wrapper around a ``requests.Session`` that applies a timeout and retry policy to
    every request.

    The policy is deliberately simple: at most ``retries`` attempts are made; between
    attempts the transport waits a constant ``backoff`` seconds (no jitter, no growth).
    A 429 response and a network failure both consume one attempt from the same budget.
    """

    def __init__(self, token: TokenSource=None, retries: int=DEF_RETRIES,
                 timeout: float=DEF_TIMEOUT, backoff: float=DEF_BACKOFF,
                 session: requests.Session=None, logger: logging.Logger=None,
                 max_workers: int=DEF_MAX_WORKERS):
        """
        create the transport

        :param token:          the bearer credential to send with each request, either as a
                               str or as a no-argument function that returns the current one.
                               If None, requests are sent without authentication.
        :param int   retries:  the maximum number of attempts per request
        :param float timeout:  the maximum number of seconds to wait for each attempt
        :param float backoff:  the number of seconds to wait before a retry
        :param session:        the session to send requests with; a new one is created
                               if not provided
        :param logger:         the Logger to send messages to
        :param int max_workers:  the maximum number of requests sent at the same time;
                               further requests wait for a free worker
        """
        if retries < 1:
            raise ValueError("ResilientTransport: retries must be at least 1")
        if max_workers < 1:
            raise ValueError("ResilientTransport: max_workers must be at least 1")
        self._token = token
        self.retries = retries
        self.timeout = timeout
        self.backoff = backoff
        self.max_workers = max_workers
        self.session = session if session is not None else requests.Session()
        self.log = logger or deflogger
        self._executor = None

    @classmethod
    def from_config(cls, config: Mapping, token: TokenSource=None, session: requests.Session=None,
                    logger: logging.Logger=None):
        """
        create a transport configured by the ``retries``, ``timeout``, ``backoff`` and
        ``max_workers`` parameters in the given configuration
        """
        retries = get_number(config, 'retries', DEF_RETRIES, int)
        if retries < 1:
            raise ConfigurationException("retries: must be at least 1", 'retries')
        max_workers = get_number(config, 'max_workers', DEF_MAX_WORKERS, int)
        if max_workers < 1:
            raise ConfigurationException("max_workers: must be at least 1", 'max_workers')
        return cls(token, retries,
                   get_number(config, 'timeout', DEF_TIMEOUT),
                   get_number(config, 'backoff', DEF_BACKOFF),
                   session, logger, max_workers)

    def close(self):
        """
        release the worker threads and the session's connections
        """
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self.session.close()

    def token(self) -> str:
        """
        return the bearer credential currently in effect (or None)
        """
        if callable(self._token):
            return self._token()
        return self._token

    def headers(self, extra: Mapping=None) -> Mapping:
        """
        return the headers to send with a request, including the credential
        """
        out = {}
        token = self.token()
        if token:
            out['Authorization'] = f"Bearer {token}"
        if extra:
            out.update(extra)
        return out

    def _send(self, method: str, url: str, headers: Mapping, kwargs: Mapping):
        return self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)

    async def _attempt(self, method: str, url: str, headers: Mapping, kwargs: Mapping):
        # the timeout clock starts once a worker picks up the request
        loop = asyncio.get_running_loop()
        started = asyncio.Event()

        def send():
            loop.call_soon_threadsafe(started.set)
            return self._send(method, url, headers, kwargs)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                thread_name_prefix="grdm-transport")
        fut = loop.run_in_executor(self._executor, send)
        try:
            await started.wait()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        return await asyncio.wait_for(fut, self.timeout)

    async def execute(self, method: str, url: str, headers: Mapping=None, **kwargs) -> requests.Response:
        """
        send a request, retrying on rate limiting and network failures.

        :param str method:   the HTTP method (e.g. "GET", "PUT")
        :param str    url:   the full URL to send the request to
        :param dict headers: extra headers to send (beyond the authorization header)
        :param kwargs:       other arguments accepted by ``requests.Session.request``
                             (e.g. ``params``, ``json``, ``data``)
        :return:  the response to the first attempt that was neither rate-limited nor failed
                  at the network level, whatever its status
        :raises RetriesExhausted:  if every attempt was rate-limited or failed
        """
        last = None
        rate_limited = False
        for attempt in range(1, self.retries + 1):
            hdrs = self.headers(headers)
            try:
                resp = await self._attempt(method, url, hdrs, kwargs)
            except asyncio.TimeoutError as ex:
                last = ex
                rate_limited = False
                self.log.warning("%s %s: timed out after %ss (attempt %d/%d)",
                                 method, url, self.timeout, attempt, self.retries)
            except requests.RequestException as ex:
                last = ex
                rate_limited = False
                self.log.warning("%s %s: request failed (attempt %d/%d): %s",
                                 method, url, attempt, self.retries, str(ex))
            else:
                if resp.status_code != 429:
                    return resp
                last = None
                rate_limited = True
                self.log.warning("%s %s: too many requests (429) (attempt %d/%d)",
                                 method, url, attempt, self.retries)

            if attempt < self.retries:
                await asyncio.sleep(self.backoff)

        raise RetriesExhausted(url, self.retries, rate_limited, cause=last) from last
