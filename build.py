#!/usr/bin/env python3
"""
Build script for deployment.
This script creates the database tables and the default admin user.
"""
import logging

from app import create_app, initialize_database

logger = logging.getLogger(__name__)


def build():
    app = create_app()
    with app.app_context():
        logger.info("Creating database tables and default admin...")
        initialize_database()
        logger.info("Database initialization completed successfully!")


if __name__ == "__main__":
    build()
