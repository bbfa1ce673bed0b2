import logging

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from config import Config
from models import Admin, db, utcnow
from admin_routes import admin_bp
from auth_routes import auth_bp
from student_routes import student_bp
from utils import limiter

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'SAMEORIGIN',
    'Referrer-Policy': 'no-referrer',
    'X-DNS-Prefetch-Control': 'off',
    'Cross-Origin-Opener-Policy': 'same-origin',
    'Cross-Origin-Resource-Policy': 'same-site',
}


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    app.config['SQLALCHEMY_DATABASE_URI'] = Config.get_database_uri()
    if test_config:
        app.config.from_mapping(test_config)

    logging.basicConfig(level=app.config['LOG_LEVEL'],
                        format='%(asctime)s %(levelname)s %(name)s : %(message)s')
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize database
    db.init_app(app)

    CORS(app, resources={r'/api/*': {'origins': _split_origins(app.config['CORS_ORIGINS']),
                                     'methods': ['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
                                     'allow_headers': ['Content-Type', 'Authorization']}})
    limiter.init_app(app)

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(admin_bp)

    register_error_handlers(app)
    register_misc_routes(app)

    @app.after_request
    def set_security_headers(response):
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    with app.app_context():
        init_database(app)

    return app


def _split_origins(value):
    return [o.strip() for o in value.split(',') if o.strip()]


def init_database(app):
    """Create tables and seed the default admin account"""
    db.create_all()
    username = app.config['DEFAULT_ADMIN_USERNAME']
    if not username or Admin.query.filter_by(username=username).first():
        return
    admin = Admin(username=username,
                  email=app.config['DEFAULT_ADMIN_EMAIL'],
                  password_hash=generate_password_hash(app.config['DEFAULT_ADMIN_PASSWORD']),
                  full_name=app.config['DEFAULT_ADMIN_FULL_NAME'],
                  role='admin', is_active=True)
    db.session.add(admin)
    db.session.commit()
    app.logger.info('Default admin %s created', username)


def register_error_handlers(app):
    @app.errorhandler(429)
    def handle_rate_limited(e):
        app.logger.warning('Rate limit exceeded for %s on %s (%s)', request.remote_addr, request.path, e.description)
        return jsonify({'ok': False, 'msg': 'rate_limited'}), 429

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        msg = (e.name or 'error').lower().replace(' ', '_')
        return jsonify({'ok': False, 'msg': msg}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        app.logger.exception('Unhandled error: %s', e)
        return jsonify({'ok': False, 'msg': 'internal_error'}), 500


def register_misc_routes(app):
    @app.route('/health')
    @limiter.exempt
    def health():
        return jsonify({'ok': True, 'status': 'healthy'})

    # Server time endpoint (UTC) for the client-side exam timer
    @app.route('/api/server_time')
    def server_time():
        return jsonify({'ok': True, 'server_time_utc': utcnow().isoformat()})


# Run the application
if __name__ == '__main__':
    create_app().run(debug=True)
