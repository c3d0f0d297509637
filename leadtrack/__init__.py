"""
Flask application factory.

Creates the app, configures logging and registers the postback, reporting,
product, analytics and admin blueprints.
"""
import importlib

from flask import Flask


def create_app():
    """Create and configure the Flask application."""
    from leadtrack.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Dashboard sends accented campaign names; keep them readable in JSON.
    app.json.ensure_ascii = False
    app.json.sort_keys = False

    from leadtrack.routes.postback import bp as postback_bp
    from leadtrack.routes.reports import bp as reports_bp
    from leadtrack.routes.products import bp as products_bp
    from leadtrack.routes.analytics import bp as analytics_bp
    from leadtrack.routes.admin import bp as admin_bp

    app.register_blueprint(postback_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(admin_bp)

    from leadtrack.extensions import redis_client
    from leadtrack.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Register every model on Base.metadata. The schema itself is owned by Alembic.
    for module in ('lead_record', 'product', 'campaign_stat', 'clarity'):
        importlib.import_module(f'leadtrack.models.{module}')

    return app
