import logging
import os

import click
from flask import Flask, current_app

from app_models import db, User
from config import INSTANCE_DIR, get_config
from errors import register_error_handlers
from security import init_security
from uploads import init_file_store

logger = logging.getLogger(__name__)


def configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)


def create_default_admin():
    """Creates an admin user if none exist."""
    # For deployment, these must be set as environment variables.
    # For local dev, they can be in the .env file.
    admin_email = current_app.config.get('DEFAULT_ADMIN_EMAIL')
    admin_password = current_app.config.get('DEFAULT_ADMIN_PASSWORD')

    if not admin_email or not admin_password:
        logger.warning("DEFAULT_ADMIN_EMAIL and/or DEFAULT_ADMIN_PASSWORD are not set. Skipping default admin creation.")
        return None

    if User.query.filter_by(role='admin').first() is not None:
        return None

    logger.info("No admin found in the database. Creating default admin user...")
    admin_user = User(name='Administrator', email=admin_email.lower(), role='admin', is_active=True)
    admin_user.set_password(admin_password)
    try:
        db.session.add(admin_user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Default admin '%s' created.", admin_email)
    return admin_user


def initialize_database():
    db.create_all()
    create_default_admin()


def create_app(config_name=None):
    config_class = get_config(config_name)

    app = Flask(__name__, instance_path=INSTANCE_DIR)
    app.config.from_object(config_class)
    app.json.sort_keys = False
    os.makedirs(app.instance_path, exist_ok=True)
    config_class.init_app(app)

    configure_logging(app)
    db.init_app(app)
    init_file_store(app)

    # Initialize security features
    init_security(app)
    register_error_handlers(app)

    from api import api_bp
    from academics import academics_bp
    from auth import auth_bp
    from daily_ops import daily_ops_bp
    from health import health_bp
    from uploads import uploads_bp

    for blueprint in (auth_bp, api_bp, academics_bp, daily_ops_bp, uploads_bp, health_bp):
        app.register_blueprint(blueprint)

    @app.cli.command('init-db')
    def init_db_command():
        """Create tables and the default admin."""
        initialize_database()
        click.echo('Database initialized.')

    logger.info("Application created with %s", config_class.__name__)
    return app


def main():
    app = create_app()
    with app.app_context():
        initialize_database()

    # This block is for local development only.
    # In production, gunicorn serves create_app() (see gunicorn_config.py).
    port = int(os.environ.get('PORT', 5001))
    logger.info("Starting local development server at http://127.0.0.1:%s", port)
    app.run(host='127.0.0.1', port=port, debug=app.config['DEBUG'])


if __name__ == '__main__':
    main()
