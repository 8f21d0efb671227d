#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import re
from urllib.parse import urljoin, urlsplit, urlunsplit

from video_proxy.errors import InvalidURLError

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_BAD_PERCENT_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def _invalid(value):
    return InvalidURLError(f"Invalid URL: {value}")


def parse_url(value):
    """
    Validate an absolute URL and return it in normalized form.

    The scheme and host are lower-cased, a default port is dropped and an
    empty path becomes ``/``. Raises InvalidURLError when the value has no
    scheme or host, carries control characters, a bad port or a malformed
    percent-escape.
    """
    if not isinstance(value, str) or not value.strip():
        raise _invalid(value)
    candidate = value.strip()
    if _CONTROL_CHARS.search(candidate) or _BAD_PERCENT_ESCAPE.search(candidate):
        raise _invalid(value)
    candidate = candidate.replace(" ", "%20")

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        raise _invalid(value)
    if not parts.scheme or not parts.netloc or not parts.hostname:
        raise _invalid(value)

    scheme = parts.scheme.lower()
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0]
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def resolve_url(base_url, reference):
    """Resolve a possibly relative reference against an absolute base URL."""
    if not isinstance(reference, str):
        raise _invalid(reference)
    try:
        joined = urljoin(base_url, reference.strip())
    except ValueError:
        raise _invalid(reference)
    return parse_url(joined)


def base_directory(url):
    """Return the URL with its last path segment, query and fragment removed."""
    return urljoin(url, ".")


def validate_query_params(args, required=("url", "ref")):
    """
    Collect the required query parameters.

    Returns a ``(params, missing)`` tuple where ``missing`` names every
    absent or empty parameter in the order they were checked.
    """
    params = {}
    missing = []
    for name in required:
        value = args.get(name)
        if not value:
            missing.append(name)
        else:
            params[name] = value
    return params, missing


def is_valid_url(value):
    try:
        parse_url(value)
    except InvalidURLError:
        return False
    return True


def extract_domain(value):
    try:
        return urlsplit(parse_url(value)).hostname
    except InvalidURLError:
        return None
