"""Environment-aware configuration for the grievance desk."""
import os
from datetime import timedelta


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: SQLite db and a non-empty secret. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        # Placeholder hosts (e.g. db_host) fall back to SQLite so a fresh checkout still boots.
        if db_url and "db_host" not in db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'grievances.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
        }
        self.SESSION_COOKIE_HTTPONLY = True
        self.REMEMBER_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.SESSION_PROTECTION = "strong"
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=7)
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_TIME_LIMIT = 3600
        self.WTF_CSRF_ENABLED = True
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@grievance.local")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "Admin@12345!")
        self.DEFAULT_ADMIN_NAME = os.getenv("DEFAULT_ADMIN_NAME", "System Administrator")
        # Workflow rules
        self.DEFAULT_ASSIGNMENT_DAYS = int(os.getenv("DEFAULT_ASSIGNMENT_DAYS", 7))
        self.EXTENSION_MIN_DAYS = int(os.getenv("EXTENSION_MIN_DAYS", 1))
        self.EXTENSION_MAX_DAYS = int(os.getenv("EXTENSION_MAX_DAYS", 365))
        self.CLOSING_REMARKS_MIN_LENGTH = int(os.getenv("CLOSING_REMARKS_MIN_LENGTH", 5))
        # Real-time channel
        self.REALTIME_QUEUE_SIZE = int(os.getenv("REALTIME_QUEUE_SIZE", 100))
        self.REALTIME_TOKEN_MAX_AGE = int(os.getenv("REALTIME_TOKEN_MAX_AGE", 3600))
        self.REALTIME_KEEPALIVE_SECONDS = int(os.getenv("REALTIME_KEEPALIVE_SECONDS", 15))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.SESSION_COOKIE_SECURE = False
        self.REMEMBER_COOKIE_SECURE = False
        self.PREFERRED_URL_SCHEME = "http"


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.REMEMBER_COOKIE_SECURE = True


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SECRET_KEY = "testing-secret-key"
        # In-memory SQLite runs on a static pool; pool sizing options do not apply.
        self.SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite://")
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.SESSION_PROTECTION = None
        self.PREFERRED_URL_SCHEME = "http"
        self.LOG_TO_FILE = False
        self.LOG_LEVEL = "DEBUG"
        self.DEFAULT_ADMIN_EMAIL = ""
        self.DEFAULT_ADMIN_PASSWORD = ""
