#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import os

from video_proxy import create_app, enable_debugging

# Create app
app = create_app()
if enable_debugging:
    app.logger.info(' DEBUGGING   = ' + str(enable_debugging))

if __name__ == "__main__":
    app.logger.info("Starting Quart server...")
    app.run(debug=enable_debugging, host='0.0.0.0', port=int(os.environ.get('VIDEO_PROXY_PORT', 9987)))
    app.logger.info("Quart server completed.")
