import os
from dotenv import load_dotenv

load_dotenv()  # loads .env if present


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    # --- Database ---
    # Prefer an explicit DATABASE_URL (useful for deploys)
    DATABASE_URL = os.getenv('DATABASE_URL')

    DB_DIALECT = os.getenv('DB_DIALECT', 'sqlite')  # 'postgres', 'mysql' or 'sqlite'
    DB_USER = os.getenv('DB_USER', 'postgres')
    DB_PASS = os.getenv('DB_PASS', '')
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_PORT = os.getenv('DB_PORT', '5432')
    DB_NAME = os.getenv('DB_NAME', 'equizzez')

    SECRET_KEY = os.getenv('FLASK_SECRET', 'dev-secret-please-change')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Auth ---
    JWT_SECRET = os.getenv('JWT_SECRET', 'dev-jwt-secret-please-change')
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRES_HOURS = int(os.getenv('JWT_EXPIRES_HOURS', '24'))

    # Seeded on first start when no admin with this username exists
    DEFAULT_ADMIN_USERNAME = os.getenv('DEFAULT_ADMIN_USERNAME', 'admin')
    DEFAULT_ADMIN_EMAIL = os.getenv('DEFAULT_ADMIN_EMAIL', 'admin@equizzez.com')
    DEFAULT_ADMIN_PASSWORD = os.getenv('DEFAULT_ADMIN_PASSWORD', 'admin123')
    DEFAULT_ADMIN_FULL_NAME = os.getenv('DEFAULT_ADMIN_FULL_NAME', 'System Administrator')

    # --- Exam sessions ---
    # Seconds after the deadline during which a submission is still accepted
    SUBMIT_GRACE_SECONDS = int(os.getenv('SUBMIT_GRACE_SECONDS', '60'))

    # Request bodies above this size are answered with 413
    MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', str(10 * 1024 * 1024)))

    # --- Rate limiting (Flask-Limiter, per client IP) ---
    RATELIMIT_ENABLED = _env_bool('RATELIMIT_ENABLED', True)
    RATELIMIT_STORAGE_URI = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')
    RATELIMIT_HEADERS_ENABLED = True
    RATE_LIMIT_WINDOW_SECONDS = int(os.getenv('RATE_LIMIT_WINDOW_SECONDS', '900'))
    RATE_LIMIT_MAX = int(os.getenv('RATE_LIMIT_MAX', '1000'))
    AUTH_RATE_LIMIT_MAX = int(os.getenv('AUTH_RATE_LIMIT_MAX', '50'))

    CORS_ORIGINS = os.getenv('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    @staticmethod
    def get_database_uri():
        """Build and return the database URI"""
        if Config.DATABASE_URL:
            return Config.DATABASE_URL
        if Config.DB_DIALECT.lower() == 'mysql':
            return f'mysql+pymysql://{Config.DB_USER}:{Config.DB_PASS}@{Config.DB_HOST}:{Config.DB_PORT}/{Config.DB_NAME}'
        elif Config.DB_DIALECT.lower() in ('postgres', 'postgresql'):
            return f'postgresql+psycopg2://{Config.DB_USER}:{Config.DB_PASS}@{Config.DB_HOST}:{Config.DB_PORT}/{Config.DB_NAME}'
        # default: file-based SQLite database in project folder
        db_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data.sqlite')
        return f'sqlite:///{db_path}'
