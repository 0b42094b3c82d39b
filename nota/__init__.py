"""Flask application factory."""
from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException
from nota.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize CSRF protection
    CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({
            'status': 'error',
            'message': 'Sesi telah berakhir. Muat ulang halaman.',
            'error': 'CSRFError'
        }), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache for report summaries
    from nota.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from nota.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust one reverse proxy for scheme/host
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Jinja filters for any UI rendered on top of this service
    from nota.utils.formatters import rupiah, num_id, date_id, datetime_id, stock_summary
    app.jinja_env.filters['rupiah'] = rupiah
    app.jinja_env.filters['num_id'] = num_id
    app.jinja_env.filters['date_id'] = date_id
    app.jinja_env.filters['datetime_id'] = datetime_id
    app.jinja_env.filters['stock_summary'] = stock_summary

    # Actor context for each request
    from nota.middleware import load_session_context

    @app.before_request
    def before_request_handler():
        load_session_context()

    # Error Handlers
    from nota.exceptions import NotaError

    @app.errorhandler(NotaError)
    def handle_nota_error(error):
        """Domain errors become JSON with their own status code."""
        if error.status_code >= 500:
            app.logger.error(f"NotaError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"NotaError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description, 'error': error.name}), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception on {request.method} {request.path}: {error}", exc_info=error)
        return jsonify({'status': 'error', 'message': 'Terjadi kesalahan pada server', 'error': 'InternalServerError'}), 500

    # Register blueprints
    from nota.blueprints.catalog import catalog_bp
    from nota.blueprints.cart import cart_bp
    from nota.blueprints.transactions import transactions_bp
    from nota.blueprints.reports import reports_bp
    from nota.blueprints.metrics import metrics_bp

    app.register_blueprint(catalog_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from nota.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
