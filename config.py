"""
Configuration for the Baliadanga High School backend
"""
import os
import tempfile

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
INSTANCE_DIR = os.path.join(BASE_DIR, 'instance')


def _database_url(default):
    database_url = os.environ.get('DATABASE_URL')
    if database_url and database_url.startswith("postgres://"):
        # Hosted PostgreSQL hands out postgres://, SQLAlchemy wants postgresql://
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url or default


class BaseConfig:
    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')

    # Session cookie (used when the frontend sends credentials)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = False
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour

    # CSRF for cookie-authenticated API calls
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None
    WTF_CSRF_HEADERS = ['X-CSRFToken', 'X-CSRF-Token']

    # Tokens
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', SECRET_KEY)
    JWT_ALGORITHM = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get('ACCESS_TOKEN_EXPIRE_MINUTES', 60 * 24 * 7))
    BCRYPT_ROUNDS = int(os.environ.get('BCRYPT_ROUNDS', 12))

    # Database
    SQLALCHEMY_DATABASE_URI = _database_url(f"sqlite:///{os.path.join(INSTANCE_DIR, 'baliadanga.db')}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Uploads
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(INSTANCE_DIR, 'uploads'))
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_UPLOAD_MB', 15)) * 1024 * 1024
    ALLOWED_UPLOAD_EXTENSIONS = {'pdf', 'doc', 'docx', 'png', 'jpg', 'jpeg', 'gif', 'webp'}

    # Accounts created alongside student/staff records
    DEFAULT_STUDENT_PASSWORD = os.environ.get('DEFAULT_STUDENT_PASSWORD', 'student123')
    DEFAULT_STAFF_PASSWORD = os.environ.get('DEFAULT_STAFF_PASSWORD', 'staff1234')
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL')
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD')

    # Failed logins allowed per client address
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    RATELIMIT_HEADERS_ENABLED = True
    LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '5 per 15 minutes')

    # Frontend origin allowed to call the API with credentials
    FRONTEND_ORIGIN = os.environ.get('FRONTEND_ORIGIN', 'http://localhost:5173')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @staticmethod
    def init_app(app):
        os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')
    LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '500 per 15 minutes')


class TestingConfig(BaseConfig):
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    JWT_SECRET_KEY = 'testing-jwt-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    BCRYPT_ROUNDS = 4
    DEFAULT_STUDENT_PASSWORD = 'student123'
    DEFAULT_STAFF_PASSWORD = 'staff1234'
    DEFAULT_ADMIN_EMAIL = None
    DEFAULT_ADMIN_PASSWORD = None
    UPLOAD_FOLDER = os.path.join(tempfile.gettempdir(), 'baliadanga-test-uploads')
    LOGIN_RATE_LIMIT = '5 per minute'
    LOG_LEVEL = 'WARNING'


class ProductionConfig(BaseConfig):
    PREFERRED_URL_SCHEME = 'https'

    # Security
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = 'None'

    # Database
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_timeout': 30,
        'pool_recycle': 1800,  # Recycle connections after 30 minutes
        'max_overflow': 2
    }

    @staticmethod
    def init_app(app):
        BaseConfig.init_app(app)
        if app.config['SECRET_KEY'] == 'dev-secret-key-change-me':
            raise RuntimeError("SECRET_KEY is required in production. Set it in environment variables.")


CONFIGS = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(name=None):
    """Resolve a config class from a name or APP_ENV"""
    name = name or os.environ.get('APP_ENV', 'development')
    return CONFIGS.get(name, DevelopmentConfig)
