#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import re
from urllib.parse import quote

from video_proxy.errors import InvalidURLError
from video_proxy.url_utils import base_directory, resolve_url

playlist_logger = logging.getLogger("playlist")

STREAM_PATH = "/player/stream"
SEGMENT_PATH = "/segment"

STREAM_INF_TAG = "#EXT-X-STREAM-INF"

# Line classes
STREAM_INF = "stream-inf"
URI = "uri"
COMMENT = "comment"
BLANK = "blank"

# Tags whose URI attribute points at another playlist; the rest point at media
PLAYLIST_URI_TAGS = ("#EXT-X-MEDIA", "#EXT-X-I-FRAME-STREAM-INF")
MEDIA_URI_TAGS = ("#EXT-X-KEY", "#EXT-X-SESSION-KEY", "#EXT-X-MAP")

_LINE_SPLIT = re.compile(r"\r?\n")
_URI_ATTRIBUTE = re.compile(r'URI=(?:"([^"]+)"|([^",\s]+))')


def _encode_component(value):
    # Same escaping as JavaScript's encodeURIComponent
    return quote(value, safe="!~*'()")


def build_proxied_reference(path, absolute_url, referer_url):
    return f"{path}?url={_encode_component(absolute_url)}&ref={_encode_component(referer_url)}"


def classify_line(line):
    """Classify an already stripped playlist line."""
    if not line:
        return BLANK
    if line.startswith(STREAM_INF_TAG):
        return STREAM_INF
    if line.startswith("#"):
        return COMMENT
    return URI


def _rewrite_uri_attribute(line, base_url, referer_url):
    upper_line = line.upper()
    if upper_line.startswith(PLAYLIST_URI_TAGS):
        path = STREAM_PATH
    elif upper_line.startswith(MEDIA_URI_TAGS):
        path = SEGMENT_PATH
    else:
        return line

    def replace_uri(match):
        quoted = match.group(1) is not None
        original_uri = match.group(1) if quoted else match.group(2)
        try:
            absolute_url = resolve_url(base_url, original_uri)
        except InvalidURLError:
            playlist_logger.warning("Leaving unresolvable URI attribute untouched: %s", original_uri)
            return match.group(0)
        proxied = build_proxied_reference(path, absolute_url, referer_url)
        return f'URI="{proxied}"' if quoted else f"URI={proxied}"

    return _URI_ATTRIBUTE.sub(replace_uri, line)


def rewrite_playlist(playlist_text, playlist_url, referer_url, rewrite_uri_attributes=False):
    """
    Rewrite every stream and segment reference in an M3U8 playlist so that
    it is fetched back through the proxy.

    The URI following an ``#EXT-X-STREAM-INF`` tag becomes a ``/player/stream``
    reference, any other bare URI becomes a ``/segment`` reference. Relative
    URIs are resolved against the directory of ``playlist_url``. Tags,
    comments and blank lines are passed through stripped. A stream-info tag
    without a URI after it is logged and skipped rather than failing the
    whole playlist.
    """
    base_url = base_directory(playlist_url)
    lines = _LINE_SPLIT.split(playlist_text)
    out = []

    i = 0
    while i < len(lines):
        line = lines[i].strip()
        kind = classify_line(line)
        i += 1

        if kind == STREAM_INF:
            out.append(line)
            # The next line belongs to this tag and is never re-read
            next_line = lines[i].strip() if i < len(lines) else ""
            i += 1
            if not next_line:
                playlist_logger.error("[Parse Error] Missing URI after %s in '%s'", STREAM_INF_TAG, playlist_url)
                continue
            try:
                absolute_url = resolve_url(base_url, next_line)
            except InvalidURLError as e:
                playlist_logger.error("[Parse Error] %s after %s in '%s'", e, STREAM_INF_TAG, playlist_url)
                continue
            out.append(build_proxied_reference(STREAM_PATH, absolute_url, referer_url))

        elif kind == URI:
            try:
                absolute_url = resolve_url(base_url, line)
            except InvalidURLError as e:
                playlist_logger.error("[Parse Error] Skipping %s in '%s'", e, playlist_url)
                continue
            out.append(build_proxied_reference(SEGMENT_PATH, absolute_url, referer_url))

        elif kind == COMMENT and rewrite_uri_attributes and "URI=" in line:
            out.append(_rewrite_uri_attribute(line, base_url, referer_url))

        else:
            out.append(line)

    rewritten = "\n".join(out)
    playlist_logger.debug("Rewrote playlist '%s' (%d lines in, %d lines out)", playlist_url, len(lines), len(out))
    return rewritten
