import os
from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(__file__), '.env'))


def _env_int(name, default):
    return int(os.environ.get(name) or default)


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-prod'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///washgate.db'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Business Rules Defaults
    BUFFER_BETWEEN_SLOTS_MINUTES = _env_int('BUFFER_BETWEEN_SLOTS_MINUTES', 10)
    GRACE_PERIOD_MINUTES = _env_int('GRACE_PERIOD_MINUTES', 10)
    REMINDER_BEFORE_MINUTES = _env_int('REMINDER_BEFORE_MINUTES', 5)
    EXTENSION_MINUTES = _env_int('EXTENSION_MINUTES', 5)
    MAX_BOOKINGS_PER_DAY = _env_int('MAX_BOOKINGS_PER_DAY', 3)
    MAX_ADVANCE_BOOKING_DAYS = _env_int('MAX_ADVANCE_BOOKING_DAYS', 7)
    MIN_BOOKING_MINUTES = 10
    MAX_BOOKING_MINUTES = 60
    ENDING_SOON_MINUTES = _env_int('ENDING_SOON_MINUTES', 5)
    PRIORITY_OFFER_TTL_MINUTES = _env_int('PRIORITY_OFFER_TTL_MINUTES', 30)
    PRIORITY_REBOOK_DURATION_MINUTES = _env_int('PRIORITY_REBOOK_DURATION_MINUTES', 30)
    HEARTBEAT_TIMEOUT_MINUTES = _env_int('HEARTBEAT_TIMEOUT_MINUTES', 10)

    # Hardware bridge
    MASTER_RFID_UID = os.environ.get('MASTER_RFID_UID')
    MASTER_ACCESS_MINUTES = _env_int('MASTER_ACCESS_MINUTES', 60)
    GATE_TIMEOUT_SECONDS = float(os.environ.get('GATE_TIMEOUT_SECONDS') or 3)

    # Background sweeps
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', '0') == '1'
    SWEEP_FAST_SECONDS = _env_int('SWEEP_FAST_SECONDS', 60)
    SWEEP_SLOW_SECONDS = _env_int('SWEEP_SLOW_SECONDS', 300)


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCHEDULER_ENABLED = False
    MASTER_RFID_UID = 'MASTER-0000'
    GATE_TIMEOUT_SECONDS = 1


class ProductionConfig(Config):
    DEBUG = False
    # In prod, rely on env vars strictly
