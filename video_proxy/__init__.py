#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import os
from logging.config import dictConfig
from importlib import import_module

from quart import Quart

from video_proxy.config import ProxyConfig

dictConfig({
    'version':    1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {
            'format': '%(asctime)s:%(levelname)s:%(name)s: %(message)s',
        }
    },
    'handlers':   {
        'wsgi': {
            'class':     'logging.StreamHandler',
            'stream':    'ext://sys.stderr',
            'formatter': 'default'
        }
    },
    'root':       {
        'level':    'INFO',
        'handlers': ['wsgi']
    }
})

enable_debugging = False
if os.environ.get('ENABLE_DEBUGGING', 'false').lower() == 'true':
    enable_debugging = True


def create_app(config=None):
    # Create app
    app = Quart(__name__, instance_relative_config=True)
    app.config['PROXY_CONFIG'] = config or ProxyConfig.from_env()

    # Register the route blueprints
    module = import_module('video_proxy.api.routes_video_proxy')
    app.register_blueprint(module.blueprint)

    level = logging.DEBUG if enable_debugging else logging.INFO
    app.logger.setLevel(level)
    for name in ('proxy', 'playlist'):
        logging.getLogger(name).setLevel(level)

    app.logger.info('Proxy config: %r', app.config['PROXY_CONFIG'])
    return app
