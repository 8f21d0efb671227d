#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
from datetime import datetime, timezone
from urllib.parse import urlsplit

from quart import current_app, jsonify, request

from video_proxy.api import blueprint
from video_proxy.config import ProxyConfig
from video_proxy.cors import create_cors_response, preflight_response
from video_proxy.errors import FetchError, InvalidURLError, MissingParametersError
from video_proxy.http_client import fetch_with_proxy
from video_proxy.playlist import SEGMENT_PATH, STREAM_PATH, rewrite_playlist
from video_proxy.url_utils import parse_url, validate_query_params

proxy_logger = logging.getLogger("proxy")

SERVICE_NAME = "Video Proxy Worker"
AVAILABLE_ENDPOINTS = [STREAM_PATH, SEGMENT_PATH]
PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
DEFAULT_SEGMENT_CONTENT_TYPE = "application/octet-stream"
SEGMENT_CONTENT_TYPES = {
    ".ts":   "video/MP2T",
    ".m4s":  "video/mp4",
    ".webm": "video/webm",
}


def _proxy_config():
    return current_app.config.get("PROXY_CONFIG") or ProxyConfig()


def _json_response(payload, status=200, headers=None):
    response = jsonify(payload)
    response.status_code = status
    if headers:
        response.headers.update(headers)
    return response


def _timestamp():
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _param_error_response(error):
    return _json_response({"error": str(error), "required": error.missing}, status=400)


def _url_error_response(error):
    return _json_response({"error": str(error)}, status=400)


def _fetch_error_response(error, operation):
    status = getattr(error, "status_code", 500)
    proxy_logger.error("Error in %s: %s", operation, error)
    return _json_response(
        {
            "error":     f"Failed to {operation}",
            "message":   str(error),
            "status":    status,
            "timestamp": _timestamp(),
        },
        status=status,
        headers={"Access-Control-Allow-Origin": "*"},
    )


def _read_proxy_request():
    params, missing = validate_query_params(request.args, ("url", "ref"))
    if missing:
        raise MissingParametersError(missing)
    return parse_url(params["url"]), parse_url(params["ref"])


def determine_content_type(upstream_content_type, segment_url):
    if upstream_content_type:
        return upstream_content_type
    path = urlsplit(segment_url).path.lower()
    for extension, content_type in SEGMENT_CONTENT_TYPES.items():
        if path.endswith(extension):
            return content_type
    return DEFAULT_SEGMENT_CONTENT_TYPE


def create_segment_headers(content_type):
    return {
        "Content-Type":  content_type,
        "Cache-Control": "public, max-age=3600",
        "Accept-Ranges": "bytes",
    }


@blueprint.before_app_request
async def filter_methods():
    if request.method == "OPTIONS":
        return preflight_response(_proxy_config().cors_headers)
    if request.method != "GET":
        proxy_logger.debug("Rejecting %s %s", request.method, request.path)
        return _json_response({"error": "Method not allowed"}, status=405)
    return None


@blueprint.app_errorhandler(404)
async def not_found(error):
    return _json_response({"error": "Not found", "available_endpoints": AVAILABLE_ENDPOINTS}, status=404)


@blueprint.route("/", methods=["GET"])
@blueprint.route("/health", methods=["GET"])
async def health():
    return _json_response({"status": "ok", "service": SERVICE_NAME, "endpoints": AVAILABLE_ENDPOINTS})


@blueprint.route(STREAM_PATH, methods=["GET"])
async def proxy_m3u8():
    config = _proxy_config()
    try:
        m3u8_url, ref_url = _read_proxy_request()
        proxy_logger.info("Fetching playlist: %s (ref: %s)", m3u8_url, ref_url)
        upstream = await fetch_with_proxy(m3u8_url, ref_url, config=config)
        playlist_text = await upstream.text()
        # Resolve against where the playlist actually came from after redirects
        body = rewrite_playlist(
            playlist_text,
            upstream.url,
            ref_url,
            rewrite_uri_attributes=config.rewrite_uri_attributes,
        )
    except MissingParametersError as e:
        proxy_logger.error("[proxy_m3u8][Request Error] Missing query params: %s", ", ".join(e.missing))
        return _param_error_response(e)
    except InvalidURLError as e:
        proxy_logger.error("[proxy_m3u8][URL Parse Error] %s", e)
        return _url_error_response(e)
    except FetchError as e:
        return _fetch_error_response(e, "proxy M3U8 playlist")
    except Exception as e:
        proxy_logger.exception("Unexpected error proxying playlist")
        return _fetch_error_response(e, "proxy M3U8 playlist")

    return create_cors_response(
        body,
        headers={"Content-Type": PLAYLIST_CONTENT_TYPE},
        cors_headers=config.cors_headers,
    )


@blueprint.route(SEGMENT_PATH, methods=["GET"])
async def proxy_segment():
    config = _proxy_config()
    try:
        segment_url, ref_url = _read_proxy_request()
        proxy_logger.info("Fetching segment: %s (ref: %s)", segment_url, ref_url)
        upstream = await fetch_with_proxy(segment_url, ref_url, config=config)
    except MissingParametersError as e:
        proxy_logger.error("[proxy_segment][Request Error] Missing query params: %s", ", ".join(e.missing))
        return _param_error_response(e)
    except InvalidURLError as e:
        proxy_logger.error("[proxy_segment][URL Parse Error] %s", e)
        return _url_error_response(e)
    except FetchError as e:
        return _fetch_error_response(e, "fetch video segment")
    except Exception as e:
        proxy_logger.exception("Unexpected error proxying segment")
        return _fetch_error_response(e, "fetch video segment")

    content_type = determine_content_type(upstream.headers.get("Content-Type"), segment_url)
    # Body is streamed straight through; the upstream connection closes when it ends
    response = create_cors_response(
        upstream.iter_chunked(),
        headers=create_segment_headers(content_type),
        cors_headers=config.cors_headers,
    )
    response.timeout = None
    return response
