from flask_sqlalchemy import SQLAlchemy # ORM for database interactions.
from flask_login import LoginManager    # Supplies the "current user" for billing requests.
from flask_migrate import Migrate       # Alembic migrations for the billing tables.

# Initialize SQLAlchemy.
# This instance will be further configured and associated with the Flask app
# in the application factory (create_app function in app.py) using db.init_app(app).
# Every billing operation runs inside its session; see services/transactions.py.
db = SQLAlchemy()

# Initialize Flask-Login's LoginManager.
# Authentication itself lives outside this service; the manager only reloads
# the user id stored in the session so routes can read current_user.
login_manager = LoginManager()

# Initialize Flask-Migrate. Bound to the app and db in create_app.
migrate = Migrate()
