#!/usr/bin/env python3
"""
Entry point for the clubhouse tournament service.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    LOG_LEVEL: Root log level (default: INFO)
"""
import os
import logging


def run_clubhouse():
    """Run the tournament API service."""
    from clubhouse.app import create_app

    app = create_app()
    logging.basicConfig(
        level=app.config['LOG_LEVEL'].upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    logging.getLogger(__name__).info(f"Starting clubhouse on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    run_clubhouse()
