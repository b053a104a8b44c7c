import os
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from biblioteca.config import Config

# ── Extension instances (created once, initialised in create_app) ──────────
db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
    storage_uri="memory://",
)


def create_app(config_class=Config):
    """Application factory: creates and configures the Flask app."""

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Ensure the storage root exists
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # Initialise extensions
    db.init_app(app)
    bcrypt.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Flask-Login configuration
    login_manager.login_view = "main.login"
    login_manager.login_message_category = "info"

    # ── User loader callback ──────────────────────────────────────────
    from biblioteca.models import Account

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(Account, user_id)

    # ── Per-request session context (role resolved from claims) ───────
    from biblioteca.identity import load_session_context, get_session_context
    from biblioteca import permissions

    app.before_request(load_session_context)

    @app.context_processor
    def inject_session_context():
        return dict(session_ctx=get_session_context(), permissions=permissions)

    # ── Register blueprints ─────────────────────────────────────────
    from biblioteca.routes import main
    from biblioteca.admin_routes import admin_bp
    from biblioteca.api_routes import api_bp

    app.register_blueprint(main)
    app.register_blueprint(admin_bp)
    app.register_blueprint(api_bp)

    # ── Error handlers ────────────────────────────────────────────────
    from flask import render_template, jsonify, request
    from biblioteca.exceptions import LibraryError

    def _wants_json():
        return request.blueprint == "api" or request.is_json

    @app.errorhandler(LibraryError)
    def library_error(e):
        if e.status_code >= 500:
            db.session.rollback()
        if _wants_json():
            return jsonify(e.to_dict()), e.status_code
        return render_template("errors/error.html", error=e), e.status_code

    @app.errorhandler(403)
    def forbidden(e):
        ctx = get_session_context()
        app.logger.warning(
            "permission-denied %s",
            {
                "path": request.path,
                "method": request.method,
                "uid": ctx.uid if ctx else None,
                "role": ctx.role if ctx else None,
            },
        )
        if _wants_json():
            return jsonify({"error": "permission-denied", "message": "Forbidden."}), 403
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found(e):
        if _wants_json():
            return jsonify({"error": "not-found", "message": "Not found."}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        return (
            jsonify(
                {
                    "error": "Too many requests. Please wait a moment before trying again.",
                    "retry_after": str(e.description),
                }
            ),
            429,
        )

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        if _wants_json():
            return jsonify({"error": "internal", "message": "An internal server error occurred."}), 500
        return render_template("errors/500.html"), 500

    # ── CLI commands ──────────────────────────────────────────────────
    import click
    from biblioteca.models import ROLES, User

    @app.cli.command("set-role")
    @click.argument("email")
    @click.argument("role", type=click.Choice(ROLES))
    def set_role_command(email, role):
        """Set the role claim of an account (and mirror it to its profile)."""
        account = Account.query.filter_by(email=email).first()
        if not account:
            click.echo(f"Error: Account '{email}' not found.")
            return
        account.claims = {**(account.claims or {}), "role": role}
        profile = db.session.get(User, account.id)
        if profile is not None:
            profile.role = role
        db.session.commit()
        click.echo(f"✓ '{email}' is now {role}.")

    # Create tables on first run (development convenience)
    with app.app_context():
        db.create_all()

    return app
