#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import os
from types import MappingProxyType

proxy_logger = logging.getLogger("proxy")

DEFAULT_TIMEOUT_MS = 15000
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = MappingProxyType({
    "User-Agent":      DEFAULT_USER_AGENT,
    "Accept":          "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection":      "keep-alive",
    "Cache-Control":   "no-cache",
})

CORS_HEADERS = MappingProxyType({
    "Access-Control-Allow-Origin":  "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age":       "86400",
})


def _env_flag(environ, name, default=False):
    value = environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(environ, name, default):
    value = environ.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        proxy_logger.warning("Ignoring invalid %s=%r, using %s", name, value, default)
        return default
    if parsed <= 0:
        proxy_logger.warning("Ignoring non-positive %s=%r, using %s", name, value, default)
        return default
    return parsed


class ProxyConfig:
    """
    Process-wide, read-only settings for the proxy.

    Built once when the app is created and handed to the handlers through
    ``app.config["PROXY_CONFIG"]``.
    """

    def __init__(self, timeout_ms=DEFAULT_TIMEOUT_MS, default_headers=None, cors_headers=None,
                 rewrite_uri_attributes=False):
        self.timeout_ms = int(timeout_ms)
        self.default_headers = MappingProxyType(dict(DEFAULT_HEADERS if default_headers is None else default_headers))
        self.cors_headers = MappingProxyType(dict(CORS_HEADERS if cors_headers is None else cors_headers))
        self.rewrite_uri_attributes = bool(rewrite_uri_attributes)

    @property
    def timeout_seconds(self):
        return self.timeout_ms / 1000.0

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ
        headers = dict(DEFAULT_HEADERS)
        for name, variable in (
                ("User-Agent", "VIDEO_PROXY_USER_AGENT"),
                ("Accept", "VIDEO_PROXY_ACCEPT"),
                ("Accept-Language", "VIDEO_PROXY_ACCEPT_LANGUAGE"),
                ("Accept-Encoding", "VIDEO_PROXY_ACCEPT_ENCODING"),
        ):
            value = environ.get(variable)
            if value:
                headers[name] = value
        return cls(
            timeout_ms=_env_int(environ, "VIDEO_PROXY_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            default_headers=headers,
            rewrite_uri_attributes=_env_flag(environ, "VIDEO_PROXY_REWRITE_URI_ATTRIBUTES"),
        )

    def __repr__(self):
        return (f"ProxyConfig(timeout_ms={self.timeout_ms}, "
                f"rewrite_uri_attributes={self.rewrite_uri_attributes})")
