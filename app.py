import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from config import config
from extensions import db
from routes import progress_bp
from services import Clock, GamificationService

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def setup_logging(app, max_bytes=10_000_000, backup_count=5):
    logger = logging.getLogger()
    logger.setLevel(app.config['LOG_LEVEL'])

    log_file = app.config.get('LOG_FILE')
    if log_file and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        Path(log_file).parent.mkdir(exist_ok=True, parents=True)
        handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


def register_commands(app):
    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop all existing tables first.')
    def init_db(drop):
        """Create the progress tables."""
        if drop:
            click.confirm('This will DROP all existing tables and data. Continue?', abort=True)
            db.drop_all()
            click.echo('Dropped all tables.')
        db.create_all()
        click.echo('Database initialized successfully!')


def create_app(config_name=None):
    config_name = config_name or os.getenv('FLASK_CONFIG', 'default')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    # Fix for Render/Heroku (Reverse Proxy)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    setup_logging(app)
    db.init_app(app)

    app.extensions['gamification'] = GamificationService(
        clock=Clock(app.config['PROGRESS_TIMEZONE']),
        max_retries=app.config['PROGRESS_MAX_RETRIES'],
    )
    app.register_blueprint(progress_bp)

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'status': 'error', 'message': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'status': 'error', 'message': 'Method not allowed'}), 405

    register_commands(app)

    with app.app_context():
        db.create_all()

    app.logger.info("StudyVerse progress service started (%s config)", config_name)
    return app
