"""
Flask Application Factory
Initializes and configures the Flask application
"""

from flask import Flask, jsonify, request
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect, CSRFError
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from config import config
from bakery_pos.models import db, User

# Initialize extensions
login_manager = LoginManager()
migrate = Migrate()
csrf = CSRFProtect()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name='default'):
    """
    Application factory pattern
    Creates and configures Flask application
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Validate secret key in production
    if config_name == 'production':
        if not app.config.get('SECRET_KEY') or app.config['SECRET_KEY'] == 'dev-secret-key-change-in-production':
            raise ValueError("Production requires a secure SECRET_KEY. Set it via environment variable.")
        if len(app.config['SECRET_KEY']) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters for production.")

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    limiter.init_app(app)

    # Initialize Sentry if configured
    if app.config.get('SENTRY_DSN'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=config_name
        )
        app.logger.info("Sentry error tracking initialized")

    @login_manager.user_loader
    def load_user(user_id):
        """Load user by ID for Flask-Login"""
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # Register blueprints
    from bakery_pos.routes.auth import bp as auth_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')

    from bakery_pos.routes.branches import bp as branches_bp
    app.register_blueprint(branches_bp, url_prefix='/branches')

    from bakery_pos.routes.employees import bp as employees_bp
    app.register_blueprint(employees_bp, url_prefix='/employees')

    from bakery_pos.routes.customers import bp as customers_bp
    app.register_blueprint(customers_bp, url_prefix='/customers')

    from bakery_pos.routes.reservations import bp as reservations_bp
    app.register_blueprint(reservations_bp, url_prefix='/reservations')

    from bakery_pos.routes.products import bp as products_bp
    app.register_blueprint(products_bp, url_prefix='/products')

    from bakery_pos.routes.sales import bp as sales_bp
    app.register_blueprint(sales_bp, url_prefix='/sales')

    @app.route('/')
    def index():
        """Service status and the caller's branch scope"""
        from flask import g
        scope = getattr(g, 'branch_scope', None)
        return jsonify({
            'name': app.config.get('BUSINESS_NAME'),
            'scope': scope.to_dict() if scope else None
        })

    # Error handlers
    from bakery_pos.errors import BranchScopeError

    @app.errorhandler(BranchScopeError)
    def branch_scope_error(error):
        return jsonify({'error': str(error)}), error.status_code

    @app.errorhandler(400)
    def bad_request_error(error):
        return jsonify({'error': 'Bad request'}), 400

    @app.errorhandler(403)
    def forbidden_error(error):
        return jsonify({'error': 'Forbidden'}), 403

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def rate_limit_error(error):
        return jsonify({'error': 'Too many requests', 'message': str(error.description)}), 429

    @app.errorhandler(500)
    def internal_error(error):
        from bakery_pos.utils.error_logger import log_error
        db.session.rollback()
        log_error(getattr(error, 'original_exception', None) or error)
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        return jsonify({
            'error': 'CSRF token missing or invalid',
            'message': 'Please refresh the page and try again'
        }), 400

    # Request hooks
    @app.before_request
    def before_request():
        """Actions to perform before each request"""
        from flask import session
        session.permanent = True

        if request.endpoint == 'static':
            return

        from bakery_pos.utils.branch_context import set_branch_context
        set_branch_context()

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses"""
        response.headers['Content-Security-Policy'] = "default-src 'self'; frame-ancestors 'none';"
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        return response

    return app
