"""Flask application factory."""
from flask import Flask, jsonify
from quotedesk.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    sentry_dsn = app.config.get('SENTRY_DSN')
    if sentry_dsn and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Initialize database
    init_db(app)

    # Error Handlers
    from quotedesk.exceptions import QuoteDeskError

    @app.errorhandler(QuoteDeskError)
    def handle_quotedesk_error(error):
        """Handle custom application exceptions."""
        app.logger.error(f"QuoteDeskError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    # Register blueprints
    from quotedesk.blueprints.metrics import metrics_bp
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from quotedesk.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"quotedesk started (env={app.config.get('ENV')})")
    return app
