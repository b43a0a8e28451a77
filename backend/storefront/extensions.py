# Overview: Flask extension instances (database, migrations) and their binding to the app.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

# Batch mode lets ALTER-style migrations run on the SQLite dev database too
migrate = Migrate(render_as_batch=True)


def init_extensions(app):
    """Bind db and migrate to the app; config overrides must already be applied."""
    db.init_app(app)
    migrate.init_app(app, db)
