import os


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'civic-issue-tracker-secret-key-change-me')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///civic_issues.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(os.getcwd(), 'uploads'))
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 10 * 1024 * 1024))
    MAX_MEDIA_FILES = 5

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # When off, any admin may resolve any assigned issue.
    ENFORCE_ASSIGNEE_ON_RESOLVE = _env_flag('ENFORCE_ASSIGNEE_ON_RESOLVE', True)

    DEFAULT_CATEGORIES = (
        'Roads & Potholes',
        'Garbage & Sanitation',
        'Streetlights',
        'Water Supply',
        'Drainage',
        'Other',
    )


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_LEVEL = 'DEBUG'
