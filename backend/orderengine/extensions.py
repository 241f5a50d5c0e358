# Overview: Flask extension instances for database, migrations and the completion notifier.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.notifier_service import ChangeNotifier

db = SQLAlchemy()
migrate = Migrate()
notifier = ChangeNotifier()
