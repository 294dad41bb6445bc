import logging # Standard library logging; Flask's app.logger is built on it.
from flask import Flask, jsonify # The main Flask class and JSON responses.
from config import Config # Import the application's configuration class.
from errors import SubscriptionServiceError # Base class of every domain error.
from extensions import db, login_manager, migrate # Import initialized extensions.
from models.user import User # Import User model, primarily for the user_loader.

# Application Factory Function
def create_app(config_class=Config):
    """
    Application factory for creating and configuring the Flask app.
    Tests pass their own configuration class (in-memory database, fixed secrets).
    """
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration from the given class (defined in config.py by default).
    app.config.from_object(config_class)

    # --- Logging ---
    # Every service logs through current_app.logger; its level comes from LOG_LEVEL.
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    # --- Initialize Flask Extensions ---
    db.init_app(app) # SQLAlchemy ORM.
    migrate.init_app(app, db) # Flask-Migrate links the app and the db to Alembic.
    login_manager.init_app(app) # Session-based authentication.

    # --- Flask-Login User Loader ---
    # Reloads the user object from the user ID stored in the session on each request.
    @login_manager.user_loader
    def load_user(user_id):
        """Loads a user from the database given their ID."""
        return db.session.get(User, int(user_id))

    # This is a JSON API: answer unauthenticated calls with 401 instead of redirecting to a login page.
    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'error': 'unauthorized', 'message': 'Authentication is required.'}), 401

    # --- Error Handling ---
    # Domain errors raised anywhere below a route map to their HTTP status here,
    # so routes never build error responses themselves.
    @app.errorhandler(SubscriptionServiceError)
    def handle_service_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.kind}: {error.message}")
        else:
            app.logger.info(f"Request rejected ({error.kind}): {error.message}")
        return jsonify(error.to_dict()), error.status_code

    # --- Import and Register Blueprints ---
    from routes.subscriptions import subscriptions_bp
    from routes.billing import billing_bp
    from routes.main import main_bp # Health check.

    app.register_blueprint(subscriptions_bp) # /api/v1/subscriptions/...
    app.register_blueprint(billing_bp)       # /api/v1/billing/...
    app.register_blueprint(main_bp)

    # --- CLI Commands ---
    # `flask expire-subscriptions` (scheduled via cron) and `flask seed-plans`.
    from commands import expire_subscriptions_command, seed_plans_command
    app.cli.add_command(expire_subscriptions_command)
    app.cli.add_command(seed_plans_command)

    return app # Return the configured Flask app instance.

# This block allows running the Flask development server directly using `python app.py`.
if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
