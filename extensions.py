"""Shared Flask extension singletons to avoid circular imports."""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect
from flask_login import LoginManager

from utils.realtime import NotificationHub

# Initialize extensions without app; create_app binds them.
csrf = CSRFProtect()
db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
hub = NotificationHub()
