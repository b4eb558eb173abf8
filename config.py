import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _database_url(default):
    database_url = os.getenv('DATABASE_URL', default)
    # Render/Heroku still hand out the old scheme
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = _database_url('sqlite:///StudyVerse.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,     # Validate connections
    }

    # Streak days roll over at midnight in this timezone
    PROGRESS_TIMEZONE = os.getenv('PROGRESS_TIMEZONE', 'UTC')
    PROGRESS_MAX_RETRIES = int(os.getenv('PROGRESS_MAX_RETRIES', 3))
    LEADERBOARD_DEFAULT_LIMIT = int(os.getenv('LEADERBOARD_DEFAULT_LIMIT', 10))
    LEADERBOARD_MAX_LIMIT = 100

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    LOG_FILE = None


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig,
}
