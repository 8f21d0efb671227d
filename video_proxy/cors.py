#!/usr/bin/env python3
# -*- coding:utf-8 -*-
from quart import Response

from video_proxy.config import CORS_HEADERS


def add_cors_headers(headers=None, cors_headers=None):
    merged = dict(headers or {})
    merged.update(CORS_HEADERS if cors_headers is None else cors_headers)
    return merged


def create_cors_response(body, status=200, headers=None, cors_headers=None):
    return Response(body, status=status, headers=add_cors_headers(headers, cors_headers))


def preflight_response(cors_headers=None):
    return Response("", status=204, headers=add_cors_headers(cors_headers=cors_headers))
