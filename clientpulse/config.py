"""
ClientPulse Configuration

All settings are read from environment variables (optionally from a .env file).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = 'true') -> bool:
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Base configuration"""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-me')
    DEBUG = False
    TESTING = False

    # Storage backend: 'mysql' or 'memory'
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'mysql')

    # MySQL
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_PORT = int(os.getenv('DB_PORT', '3306'))
    DB_USER = os.getenv('DB_USER', 'clientpulse')
    DB_PASSWORD = os.getenv('DB_PASSWORD', '')
    DB_NAME = os.getenv('DB_NAME', 'clientpulse')
    DB_POOL_SIZE = int(os.getenv('DB_POOL_SIZE', '5'))

    # Redis (cache + job queue)
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CACHE_ENABLED = _env_bool('CACHE_ENABLED', 'true')

    # Health score job
    HEALTH_SCORE_INTERVAL_SECONDS = int(os.getenv('HEALTH_SCORE_INTERVAL_SECONDS', '600'))
    HEALTH_SCORE_QUEUE = os.getenv('HEALTH_SCORE_QUEUE', 'health-scores')
    HEALTH_SCORE_WORKERS = int(os.getenv('HEALTH_SCORE_WORKERS', '1'))
    SCHEDULER_BACKEND = os.getenv('SCHEDULER_BACKEND', 'interval')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    STORE_BACKEND = 'memory'
    CACHE_ENABLED = False
    SCHEDULER_BACKEND = 'interval'


class ProductionConfig(Config):
    SECRET_KEY = os.getenv('SECRET_KEY')


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig,
}


def get_config(config_name=None):
    """Return the config class for the given name (defaults to FLASK_ENV)."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')
    return config.get(config_name, config['default'])
