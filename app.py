import logging # Standard library logging, used to set the app logger level.
from flask import Flask, jsonify # The main Flask class and JSON responses.
from config import Config # Import the application's configuration class.
from extensions import db, login_manager, migrate # Import initialized extensions.
from models.user import User # Import User model, primarily for the user_loader.
from services.exceptions import BillingError # Base class of the billing service errors.

# Application Factory Function
def create_app(config_class=Config):
    """
    Application factory for creating and configuring the Flask app.
    This pattern is useful for creating multiple app instances (e.g., for testing
    with an in-memory database) and avoids global app objects.

    Args:
        config_class: The configuration object to load (defaults to Config).
    """
    # Create a Flask application instance.
    app = Flask(__name__)

    # Load configuration from the given config object.
    app.config.from_object(config_class)

    # --- Logging ---
    # Billing services log through current_app.logger; its level comes from LOG_LEVEL.
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    # --- Initialize Flask Extensions ---
    # Initialize SQLAlchemy with the app (for database ORM).
    db.init_app(app)
    # Initialize Flask-Migrate for database schema migrations.
    migrate.init_app(app, db)
    # Initialize Flask-Login for user session management.
    # Authentication itself lives outside the billing service; it only reads the logged-in user.
    login_manager.init_app(app)

    # --- Flask-Login User Loader ---
    # This callback is used by Flask-Login to reload the user object from the
    # user ID stored in the session. It's called on each request for an authenticated user.
    @login_manager.user_loader
    def load_user(user_id):
        """Loads a user from the database given their ID."""
        return db.session.get(User, int(user_id)) # Fetches user by primary key.

    # The billing API is JSON only, so unauthenticated calls get a 401 body instead of a redirect.
    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': {'code': 'UNAUTHORIZED', 'message': 'Please log in to manage billing.', 'details': {}}}), 401

    # --- Error Handling ---
    # Every typed billing error is rendered as {"error": {"code", "message", "details"}} with its status code.
    @app.errorhandler(BillingError)
    def handle_billing_error(error):
        if error.status_code >= 500:
            app.logger.error(f"Billing request failed: {error}")
        return jsonify(error.to_dict()), int(error.status_code)

    # --- Import and Register Blueprints ---
    from routes.billing import billing_bp
    app.register_blueprint(billing_bp) # Routes are defined under the blueprint's /billing prefix.

    # --- CLI Commands ---
    @app.cli.command('seed-plans')
    def seed_plans_command():
        """Insert the default subscription plans that are missing."""
        from services.plan_catalog import seed_default_plans
        created = seed_default_plans()
        print(f"Created {len(created)} plan(s).")

    return app # Return the configured Flask app instance.

# This block allows running the Flask development server directly using `python app.py`.
if __name__ == '__main__':
    app = create_app() # Create an app instance using the factory.
    app.run(debug=True)
