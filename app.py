import atexit
import logging
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

import errors
from admission import AdmissionController
from config_loader import load_settings
from crypto_utils import TAG_BYTES, TOKEN_BYTES, decode_b64url, encode_b64url
from forms import CreateSecretForm
from lifecycle import SecretLifecycle
from models import db, utcnow
from store import SecretStore
from sweeper import ExpirySweeper

APP_NAME = "OnceRead"

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

bp = Blueprint("secrets", __name__)


def _consume_limit() -> str:
    return current_app.config["CONSUME_RATE_LIMIT"]


def _lifecycle() -> SecretLifecycle:
    return current_app.extensions["onceread"]["lifecycle"]


def _admission() -> AdmissionController:
    return current_app.extensions["onceread"]["admission"]


def _error(message: str, code: int):
    return jsonify({"error": message}), code


@bp.after_app_request
def apply_security_headers(response):
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Cache-Control"] = "no-store"
    return response


@bp.app_errorhandler(HTTPException)
def handle_http_error(err):
    return _error(err.name.lower(), err.code or 500)


@bp.app_errorhandler(errors.NotFound)
@bp.app_errorhandler(errors.AuthenticationFailed)
def handle_not_found(err):
    return _error("not found", 404)


@bp.app_errorhandler(errors.ValidationError)
def handle_validation_error(err):
    return _error(str(err) or "invalid request", 400)


@bp.app_errorhandler(errors.VaultError)
def handle_internal_error(err):
    logger.error("Request failed: %s", err.__class__.__name__)
    return _error("internal error", 500)


@bp.route("/healthz", methods=["GET"])
def healthz():
    return jsonify({"status": "ok", "app": APP_NAME})


@bp.route("/create-secret", methods=["POST"])
def create_secret():
    if not _admission().try_admit(request.remote_addr):
        return _error("too many requests", 429)
    if not request.is_json:
        return _error("expected application/json", 400)

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or any(isinstance(v, (dict, list)) for v in payload.values()):
        return _error("invalid request", 400)

    form = CreateSecretForm()
    if not form.validate_on_submit():
        fields = {field.name: field.errors for field in form if field.errors}
        return jsonify({"error": "invalid request", "fields": fields}), 400

    expiration_date = utcnow() + timedelta(days=form.time_limit.data)
    created = _lifecycle().create(form.secret_text.data, form.max_views.data, expiration_date)
    return jsonify(
        {
            "secret": {
                "id": encode_b64url(created.token),
                "authTag": encode_b64url(created.auth_tag),
            },
            "expirationDate": expiration_date.isoformat() + "Z",
        }
    )


@bp.route("/token", methods=["GET"])
@limiter.limit(_consume_limit)
def reveal_secret():
    token_param = request.args.get("id")
    tag_param = request.args.get("authTag")
    if not token_param or not tag_param:
        return _error("missing id or authTag", 400)
    try:
        token = decode_b64url(token_param, expected_length=TOKEN_BYTES)
        auth_tag = decode_b64url(tag_param, expected_length=TAG_BYTES)
    except ValueError:
        raise errors.NotFound() from None
    revealed = _lifecycle().reveal(token, auth_tag)
    return jsonify(
        {
            "data": revealed.plaintext,
            "viewsRemaining": revealed.views_remaining,
            "expirationDate": revealed.expiration_date.isoformat() + "Z",
        }
    )


def _configure_logging(app: Flask, settings: Dict[str, Any]) -> None:
    level = getattr(logging, str(settings["log_level"]).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger().setLevel(level)
    if settings.get("log_file"):
        file_handler = RotatingFileHandler(settings["log_file"], maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        file_handler.setLevel(level)
        logging.getLogger().addHandler(file_handler)
    app.logger.setLevel(level)


def _start_scheduler(app: Flask, settings: Dict[str, Any]) -> BackgroundScheduler:
    admission: AdmissionController = app.extensions["onceread"]["admission"]
    sweeper: ExpirySweeper = app.extensions["onceread"]["sweeper"]

    def run_sweep():
        with app.app_context():
            try:
                sweeper.sweep()
            except errors.StoreError:
                logger.exception("Scheduled expiry sweep failed")

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        func=admission.tick,
        trigger="interval",
        seconds=settings["rate_limit_tick_seconds"],
        id="admission_tick",
        replace_existing=True,
    )
    scheduler.add_job(
        func=run_sweep,
        trigger="interval",
        seconds=settings["sweep_interval_seconds"],
        id="expiry_sweep",
        replace_existing=True,
    )
    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))
    logger.info(
        "Scheduled admission tick every %ss and expiry sweep every %ss",
        settings["rate_limit_tick_seconds"],
        settings["sweep_interval_seconds"],
    )
    return scheduler


def create_app(settings: Optional[Dict[str, Any]] = None) -> Flask:
    settings = settings if settings is not None else load_settings()

    app = Flask(__name__)
    _configure_logging(app, settings)

    engine_options: Dict[str, Any] = {"pool_pre_ping": True}
    if settings["database_url"].startswith("sqlite"):
        engine_options["connect_args"] = {"timeout": 30}

    app.config["SQLALCHEMY_DATABASE_URI"] = settings["database_url"]
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    app.config["MAX_CONTENT_LENGTH"] = settings["data_size_limit"]
    app.config["DATA_SIZE_LIMIT"] = settings["data_size_limit"]
    app.config["MAX_VIEWS"] = settings["max_views"]
    app.config["MAX_TTL_DAYS"] = settings["max_ttl_days"]
    app.config["CONSUME_RATE_LIMIT"] = settings["consume_rate_limit"]
    app.config["RATELIMIT_ENABLED"] = settings["rate_limit_enabled"]

    db.init_app(app)
    limiter.init_app(app)
    app.register_blueprint(bp)

    with app.app_context():
        db.create_all()

    store = SecretStore()
    app.extensions["onceread"] = {
        "store": store,
        "lifecycle": SecretLifecycle(
            store,
            max_views=settings["max_views"],
            max_ttl=timedelta(days=settings["max_ttl_days"]),
            data_size_limit=settings["data_size_limit"],
        ),
        "admission": AdmissionController(
            request_limit=settings["requests_rate_limit"],
            address_window=settings["ip_rate_limit_seconds"],
        ),
        "sweeper": ExpirySweeper(store),
    }

    if settings["scheduler_enabled"]:
        app.extensions["onceread"]["scheduler"] = _start_scheduler(app, settings)

    return app


if __name__ == "__main__":
    settings = load_settings()
    app = create_app(settings)
    app.run(host=settings["host"], port=settings["port"], debug=False)
