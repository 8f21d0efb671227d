#!/usr/bin/env python3
# -*- coding:utf-8 -*-


class ProxyError(Exception):
    """Base class for every failure the proxy converts into a JSON response."""
    status_code = 500


class InvalidURLError(ProxyError):
    status_code = 400


class MissingParametersError(ProxyError):
    status_code = 400

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing required query parameters: {', '.join(self.missing)}")


class FetchError(ProxyError):
    """Raised by the fetch client when the origin could not be read."""


class FetchTimeoutError(FetchError):
    status_code = 408


class NetworkError(FetchError):
    status_code = 500


class UpstreamError(FetchError):
    def __init__(self, upstream_status, status_text=""):
        self.upstream_status = upstream_status
        self.status_text = status_text or ""
        super().__init__(f"HTTP {upstream_status}: {self.status_text}")

    @property
    def status_code(self):
        if self.upstream_status in (403, 404, 429):
            return self.upstream_status
        if self.upstream_status in (502, 503):
            return 502
        return 500
