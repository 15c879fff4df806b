"""Flask application factory for the grievance desk service."""
import os
import uuid
from typing import Optional

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from dotenv import load_dotenv
from utils.logger import init_logging
from utils.security import apply_security_headers, normalize_email, password_meets_policy
from extensions import csrf, db, hub, migrate, login_manager


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("403 Forbidden", extra={"path": request.path, "method": request.method})
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        return jsonify({"error": "Internal server error"}), 500


def upsert_admin(email: str, password: str, full_name: str):
    """Create the admin account, or promote and reactivate an existing user with that email."""
    from models import User  # Local import to avoid circular dependency

    admin_user = User.query.filter_by(email=email).first()
    if admin_user:
        updates = False
        if admin_user.role != "admin":
            admin_user.role = "admin"
            updates = True
        if not admin_user.is_active:
            admin_user.is_active = True
            updates = True
        if updates:
            db.session.commit()
        return admin_user

    admin_user = User(full_name=full_name, email=email, role="admin", is_active=True)
    admin_user.set_password(password)
    db.session.add(admin_user)
    db.session.commit()
    return admin_user


def ensure_default_admin(app: Flask) -> None:
    """Ensure a default admin can log in on a fresh database."""
    admin_email = normalize_email(app.config.get("DEFAULT_ADMIN_EMAIL"))
    admin_password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not admin_email or not admin_password:
        return
    upsert_admin(admin_email, admin_password, app.config.get("DEFAULT_ADMIN_NAME") or "System Administrator")


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        # For SQLite just make sure the parent directory exists.
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # If we cannot connect/create, let the normal app startup fail loudly later.
            pass
        finally:
            engine.dispose()


def register_commands(app: Flask) -> None:
    @app.cli.command("assignments-rebuild")
    @click.option("--officer-id", default=None, help="Only rebuild this officer's list.")
    def assignments_rebuild(officer_id):
        """Recompute officers' complaint lists from the complaint side and report drift."""
        from utils.assignment import rebuild_officer_assignments

        drift = rebuild_officer_assignments(officer_id)
        if not drift:
            click.echo("Officer assignments are consistent.")
            return
        for drifted_id, delta in drift.items():
            click.echo(
                f"{drifted_id}: added {len(delta['missing'])}, removed {len(delta['stale'])}"
            )

    @app.cli.command("create-admin")
    @click.option("--email", required=True)
    @click.option("--name", default="System Administrator")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def create_admin(email, name, password):
        """Create an admin account or promote an existing user."""
        password_ok, reason = password_meets_policy(password)
        if not password_ok:
            raise click.BadParameter(reason, param_hint="--password")
        user = upsert_admin(normalize_email(email), password, name)
        click.echo(f"Admin ready: {user.email}")


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    if not app.config.get("TESTING"):
        app.config.from_pyfile("config.py", silent=True)
        os.makedirs(app.instance_path, exist_ok=True)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger

    # Initialize extensions
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    hub.init_app(app)
    login_manager.init_app(app)
    login_manager.session_protection = app.config.get("SESSION_PROTECTION", "strong")

    @login_manager.user_loader
    def load_user(user_id):
        from models import User  # Local import to avoid circular dependency

        if not user_id:
            return None
        return db.session.get(User, str(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required"}), 401

    # Blueprints
    from routes import main_bp, auth_bp, grievances_bp, notifications_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(grievances_bp)
    app.register_blueprint(notifications_bp)
    # JSON clients use session cookies without form tokens.
    for blueprint in (auth_bp, grievances_bp, notifications_bp):
        csrf.exempt(blueprint)

    register_error_handlers(app)
    register_commands(app)

    # Request lifecycle hooks
    @app.before_request
    def _before_request() -> None:
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def _after_request(response):
        response.headers.setdefault("X-Request-ID", g.get("request_id", ""))
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        db.create_all()
        ensure_default_admin(app)

    return app


# Expose the Flask application for WSGI servers (e.g., gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, use_reloader=False, threaded=True)
