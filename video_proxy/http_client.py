#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import asyncio
import logging
from urllib.parse import urljoin, urlsplit

import aiohttp

from video_proxy.config import ProxyConfig
from video_proxy.errors import FetchTimeoutError, NetworkError, UpstreamError

proxy_logger = logging.getLogger("proxy")

CHUNK_SIZE = 65536  # 64 KB per read
MAX_REDIRECTS = 10
REDIRECT_STATUSES = (301, 302, 303, 307, 308)


def merge_headers(defaults, overrides=None):
    """Merge two header mappings, ``overrides`` wins on a case-insensitive key match."""
    merged = dict(defaults or {})
    for name, value in (overrides or {}).items():
        for existing in [key for key in merged if key.lower() == name.lower()]:
            del merged[existing]
        merged[name] = value
    return merged


def create_proxy_headers(referer_url, target_url):
    """
    Build the headers that make an origin believe the request comes from a
    browser on the referer page.
    """
    referer = urlsplit(referer_url)
    target = urlsplit(target_url)
    referer_host = referer.netloc.rsplit("@", 1)[-1]
    return {
        "Referer":        referer_url,
        "Origin":         f"{referer.scheme}://{referer_host}",
        "Host":           target.hostname or "",
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "cross-site",
    }


class UpstreamResponse:
    """
    An origin response whose body has not been read yet.

    Owns the aiohttp session until the body is consumed or release() is
    called.
    """

    def __init__(self, session, response):
        self._session = session
        self._response = response
        self._released = False

    @property
    def status(self):
        return self._response.status

    @property
    def reason(self):
        return self._response.reason or ""

    @property
    def headers(self):
        return self._response.headers

    @property
    def url(self):
        return str(self._response.url)

    async def text(self):
        try:
            return await self._response.text(errors="replace")
        except asyncio.TimeoutError:
            raise FetchTimeoutError(f"Timed out reading {self.url}") from None
        except aiohttp.ClientError as e:
            raise NetworkError(f"Failed reading {self.url}: {e}") from e
        finally:
            await self.release()

    async def iter_chunked(self, chunk_size=CHUNK_SIZE):
        try:
            async for chunk in self._response.content.iter_chunked(chunk_size):
                yield chunk
        finally:
            await self.release()

    async def release(self):
        if self._released:
            return
        self._released = True
        self._response.close()
        await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.release()


def _retarget_host(headers, url):
    """Point an explicit Host header at the host of ``url``."""
    retargeted = dict(headers)
    for name in retargeted:
        if name.lower() == "host":
            retargeted[name] = urlsplit(url).hostname or ""
    return retargeted


async def _send(session, url, headers):
    # Redirects are followed by hand so a spoofed Host header follows the hop
    for _ in range(MAX_REDIRECTS + 1):
        response = await session.get(url, headers=headers, allow_redirects=False)
        location = response.headers.get("Location")
        if response.status not in REDIRECT_STATUSES or not location:
            return response
        response.close()
        url = urljoin(str(response.url), location)
        headers = _retarget_host(headers, url)
        proxy_logger.debug("Following redirect to '%s'", url)
    raise aiohttp.ClientError(f"Too many redirects (more than {MAX_REDIRECTS})")


async def fetch_with_config(url, headers=None, timeout_ms=None, config=None):
    """
    Perform a single GET against the origin.

    The default header set from the config is merged with ``headers``. The
    request is cancelled if the response headers have not arrived within
    ``timeout_ms``. Statuses outside [200, 400) raise UpstreamError.
    """
    config = config or ProxyConfig()
    if timeout_ms is None:
        timeout_ms = config.timeout_ms
    timeout_seconds = timeout_ms / 1000.0
    request_headers = merge_headers(config.default_headers, headers)

    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=None, sock_connect=timeout_seconds, sock_read=timeout_seconds)
    )
    try:
        response = await asyncio.wait_for(_send(session, url, request_headers), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        await session.close()
        proxy_logger.warning("Request to '%s' timed out after %s ms", url, timeout_ms)
        raise FetchTimeoutError(f"Request timed out after {timeout_ms} ms") from None
    except (aiohttp.ClientError, OSError) as e:
        await session.close()
        proxy_logger.error("Network error fetching '%s': %s", url, e)
        raise NetworkError(str(e) or e.__class__.__name__) from e
    except asyncio.CancelledError:
        await session.close()
        raise

    upstream = UpstreamResponse(session, response)
    if upstream.status < 200 or upstream.status >= 400:
        await upstream.release()
        proxy_logger.error("Upstream '%s' responded with %s %s", url, upstream.status, upstream.reason)
        raise UpstreamError(upstream.status, upstream.reason)
    return upstream


async def fetch_with_proxy(url, referer_url, headers=None, timeout_ms=None, config=None):
    """Fetch ``url`` with browser-like headers derived from ``referer_url``."""
    proxy_headers = merge_headers(create_proxy_headers(referer_url, url), headers)
    return await fetch_with_config(url, headers=proxy_headers, timeout_ms=timeout_ms, config=config)
