import logging
import os

from dotenv import load_dotenv
from flask import Flask
from flask_login import LoginManager
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from boltstax_portal.errors import ServiceError, ValidationError
from boltstax_portal.models import db, User
from boltstax_portal.services.autosave import AutosaveScheduler
from boltstax_portal.utils import api_response

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _database_url():
    database_url = os.environ.get('DATABASE_URL')
    # Normalize Postgres URL
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url or 'sqlite:///boltstax.db'


def create_app(config_overrides=None):
    load_dotenv()  # Load env vars before anything else

    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    # --- CONFIGURATION ---
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'boltstax-dev-key')
    app.config['SQLALCHEMY_DATABASE_URI'] = _database_url()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['RESEND_API_KEY'] = os.environ.get('RESEND_API_KEY')
    app.config['EMAIL_FROM'] = os.environ.get('EMAIL_FROM')
    app.config['EMAIL_NAME'] = os.environ.get('EMAIL_NAME', 'BoltStax')
    app.config['APP_BASE_URL'] = os.environ.get('APP_BASE_URL', 'http://localhost:5173')
    app.config['AUTOSAVE_DEBOUNCE_SECONDS'] = float(os.environ.get('AUTOSAVE_DEBOUNCE_SECONDS', 2.0))
    app.config['AUTOSAVE_MAX_RETRIES'] = int(os.environ.get('AUTOSAVE_MAX_RETRIES', 3))
    app.config['AUTO_CREATE_TABLES'] = _env_flag('AUTO_CREATE_TABLES')
    if config_overrides:
        app.config.update(config_overrides)

    # --- INITIALIZE EXTENSIONS ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    AutosaveScheduler(app)  # registers itself in app.extensions['autosave']

    @login_manager.user_loader
    def load_user(user_id):
        return User.query.get(user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return api_response(success=False, error='Authentication required', status=401)

    # --- ERROR HANDLERS ---
    @app.errorhandler(ServiceError)
    def service_error(error):
        if error.status_code >= 500:
            logger.error("Service error: %s", error.message)
        extra = {}
        if isinstance(error, ValidationError) and error.field_errors:
            extra['field_errors'] = error.field_errors
        return api_response(success=False, error=error.message, status=error.status_code, **extra)

    @app.errorhandler(404)
    def not_found_error(error):
        return api_response(success=False, error='Not found', status=404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return api_response(success=False, error='Method not allowed', status=405)

    @app.errorhandler(500)
    def internal_error(error):
        # Fail-safe rollback
        db.session.rollback()
        original = getattr(error, 'original_exception', None)
        if original is not None and not isinstance(original, HTTPException):
            logger.exception("Unhandled error", exc_info=original)
        return api_response(success=False, error='Internal server error', status=500)

    # --- REGISTER BLUEPRINTS ---
    from boltstax_portal.routes.auth import auth_bp
    from boltstax_portal.routes.companies import companies_bp
    from boltstax_portal.routes.sheets import sheets_bp
    from boltstax_portal.routes.public import public_bp
    from boltstax_portal.routes.templates import templates_bp
    from boltstax_portal.routes.questions import questions_bp
    from boltstax_portal.routes.notifications import notifications_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(companies_bp)
    app.register_blueprint(sheets_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(templates_bp)
    app.register_blueprint(questions_bp)
    app.register_blueprint(notifications_bp)

    # --- TABLE CREATION ---
    if app.config.get('AUTO_CREATE_TABLES'):
        with app.app_context():
            db.create_all()
            logger.info("Tables created (if missing).")

    return app
