#!/usr/bin/env python3
"""
WatchStats - Web Interface Entry Point

Run this script to start the web application:
    python3 run_watchstats.py

Then open your browser to: http://127.0.0.1:8487
"""

import logging
import os

from flask_app import create_app

app = create_app(os.getenv('FLASK_CONFIG', 'development'))
logger = logging.getLogger(__name__)

if __name__ == '__main__':
    # Get port from environment variable or use default
    port = int(os.getenv('PORT', 8487))

    logger.info("Starting WatchStats on http://127.0.0.1:%d", port)
    app.run(debug=app.config.get('DEBUG', False), host='0.0.0.0', port=port)
