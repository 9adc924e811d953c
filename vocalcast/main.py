import logging
import os

import dotenv
from flask import Flask, jsonify, request
from flask_migrate import Migrate

from vocalcast.config import settings
from vocalcast.errors import register_error_handlers
from vocalcast.extensions import limiter, GATEWAY_KEY, MAILER_KEY, STORAGE_KEY
from vocalcast.models.podcast import db
from vocalcast.pi_client import PiNetworkClient
from vocalcast.routes.admin_payouts import admin_payouts_bp
from vocalcast.routes.auth_routes import auth_bp
from vocalcast.routes.payouts import payouts_bp
from vocalcast.routes.pi_payments import pi_payments_bp
from vocalcast.routes.podcasts import podcasts_bp
from vocalcast.routes.tips import tips_bp
from vocalcast.routes.wallets import wallets_bp
from vocalcast.services.email_service import EmailService
from vocalcast.services.storage_service import S3StorageClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

dotenv.load_dotenv()

migrate = Migrate()

BLUEPRINTS = (
    podcasts_bp,
    tips_bp,
    wallets_bp,
    payouts_bp,
    admin_payouts_bp,
    auth_bp,
    pi_payments_bp,
)


def _register_cors(app: Flask) -> None:
    allowed = set(settings.CORS_ORIGINS)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get('Origin')
        if origin and origin in allowed:
            response.headers['Access-Control-Allow-Origin'] = origin
            response.headers['Vary'] = 'Origin'
            response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization, X-API-Key'
            response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PATCH, DELETE, OPTIONS'
        return response


def create_app(config: dict | None = None, gateway=None, storage=None, mailer=None) -> Flask:
    """Build the Flask app. Clients passed in replace the ones built from config."""
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY')
    app.config['SQLALCHEMY_DATABASE_URI'] = settings.database_uri()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {'pool_pre_ping': True}
    if config:
        app.config.update(config)
    logger.info("Secret key configured: %s", 'Yes' if app.config.get('SECRET_KEY') else 'No')

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    if gateway is None:
        pi_ok, pi_error = settings.validate_pi_config()
        if not pi_ok:
            logger.warning("Pi payouts unavailable: %s", pi_error)
        gateway = PiNetworkClient()
    if mailer is None:
        mailer = EmailService()
        logger.info("Email providers: %s", mailer.get_status())
        if not mailer.is_configured():
            logger.warning("No email provider configured; payout requests will not notify operators")

    app.extensions[GATEWAY_KEY] = gateway
    app.extensions[STORAGE_KEY] = storage if storage is not None else S3StorageClient()
    app.extensions[MAILER_KEY] = mailer

    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)

    register_error_handlers(app)
    _register_cors(app)

    @app.route('/', methods=['GET'])
    def index():
        return jsonify({'service': 'vocalcast', 'status': 'ok'})

    return app


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        logger.info("Creating database tables...")
        db.create_all()
    app.run(host="0.0.0.0", port=settings.PORT)
