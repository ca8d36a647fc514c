# Overview: Flask extension instances for database, migrations and notifications.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.notification_service import NotificationHub

db = SQLAlchemy()
migrate = Migrate()
notifications = NotificationHub()
