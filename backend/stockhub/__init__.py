from datetime import timedelta
from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

# Privileged storage client: one engine + session registry per process, built by create_app.
db_engine = None
SessionLocal = None
jwt = JWTManager()


def _configure_logging(level_name: str):
    logger = logging.getLogger('stockhub')
    logger.setLevel(getattr(logging, str(level_name).upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
        logger.addHandler(handler)


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['STOCK_CAS_MAX_RETRIES'] = int(os.getenv('STOCK_CAS_MAX_RETRIES', '3'))
    app.config['PRODUCTS_PAGE_LIMIT'] = int(os.getenv('PRODUCTS_PAGE_LIMIT', '50'))
    app.config['PRODUCTS_MAX_LIMIT'] = int(os.getenv('PRODUCTS_MAX_LIMIT', '200'))
    app.config['MIN_PASSWORD_LENGTH'] = int(os.getenv('MIN_PASSWORD_LENGTH', '8'))
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(minutes=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES_MINUTES', '720')))

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    _configure_logging(app.config['LOG_LEVEL'])

    # Database
    dispose_db()
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.auth import auth_bp
    from .routes.business import biz_bp
    from .routes.products import products_bp
    from .routes.presentations import pres_bp
    from .routes.team import team_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(biz_bp, url_prefix='/business')
    app.register_blueprint(products_bp, url_prefix='/products')
    app.register_blueprint(pres_bp, url_prefix='/presentations')
    app.register_blueprint(team_bp, url_prefix='/team')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        if SessionLocal is not None:
            SessionLocal.rollback()
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()


def dispose_db():
    """Release the session registry and engine pool (process shutdown or app re-creation)."""
    global db_engine, SessionLocal
    if SessionLocal is not None:
        SessionLocal.remove()
    if db_engine is not None:
        db_engine.dispose()
    db_engine = None
    SessionLocal = None
