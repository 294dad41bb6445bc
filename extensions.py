from flask_sqlalchemy import SQLAlchemy # ORM for database interactions.
from flask_login import LoginManager    # Manages user sessions and the current_user proxy.
from flask_migrate import Migrate       # Alembic-backed schema migrations (`flask db ...`).

# Initialize SQLAlchemy.
# This instance is bound to the Flask app in the application factory
# (create_app in app.py) using db.init_app(app).
db = SQLAlchemy()

# Initialize Flask-Login's LoginManager.
# Identity issuance happens elsewhere; this service only needs to know who the
# caller is (current_user) and whether they are authenticated.
login_manager = LoginManager()

# Initialize Flask-Migrate. Linked to the app and `db` in create_app.
migrate = Migrate()
