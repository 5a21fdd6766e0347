"""
Configuration for TutorQuest Platform
Reads settings from the environment (and a local .env file in development)
"""

import os
import logging

from dotenv import load_dotenv
import pytz

logger = logging.getLogger(__name__)

STORE_BACKENDS = ('firestore', 'memory')

DEFAULTS = {
    'ENVIRONMENT': 'production',
    'LOG_LEVEL': 'INFO',
    'PROGRESS_STORE': 'firestore',
    'APP_TIMEZONE': 'UTC',
    'GOOGLE_APPLICATION_CREDENTIALS': '',
    'SESSION_COMPLETED_XP': '50',
    'QUIZ_COMPLETED_XP': '25',
    'PERFECT_QUIZ_XP': '25',
    'GOAL_ACHIEVED_XP': '100',
    'LEADERBOARD_LIMIT': '10',
    'XP_HISTORY_LIMIT': '20',
    'ALLOWED_ORIGINS': '*',
}

class Config:
    """Typed view over the environment variables the backend understands"""

    def __init__(self, values=None):
        values = {**DEFAULTS, **(values or {})}

        self.environment = values['ENVIRONMENT'].strip().lower()
        self.log_level = values['LOG_LEVEL'].strip().upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Unknown LOG_LEVEL: {values['LOG_LEVEL']}")

        self.progress_store = values['PROGRESS_STORE'].strip().lower()
        if self.progress_store not in STORE_BACKENDS:
            raise ValueError(f"PROGRESS_STORE must be one of {', '.join(STORE_BACKENDS)}")

        self.timezone = values['APP_TIMEZONE'].strip()
        try:
            pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown APP_TIMEZONE: {self.timezone}")

        self.credentials_path = values['GOOGLE_APPLICATION_CREDENTIALS'].strip()

        self.session_completed_xp = _positive_int(values, 'SESSION_COMPLETED_XP')
        self.quiz_completed_xp = _positive_int(values, 'QUIZ_COMPLETED_XP')
        self.perfect_quiz_xp = _positive_int(values, 'PERFECT_QUIZ_XP')
        self.goal_achieved_xp = _positive_int(values, 'GOAL_ACHIEVED_XP')
        self.leaderboard_limit = _positive_int(values, 'LEADERBOARD_LIMIT')
        self.xp_history_limit = _positive_int(values, 'XP_HISTORY_LIMIT')

        origins = [o.strip() for o in values['ALLOWED_ORIGINS'].split(',') if o.strip()]
        self.allowed_origins = origins or ['*']

    @property
    def is_development(self):
        return self.environment == 'development'

    @classmethod
    def from_env(cls, dotenv_path=None):
        """
        Build a Config from os.environ, loading a .env file first if present
        """
        load_dotenv(dotenv_path)
        values = {key: os.environ[key] for key in DEFAULTS if key in os.environ}
        config = cls(values)
        logger.debug(f"Loaded configuration: environment={config.environment}, store={config.progress_store}")
        return config

def _positive_int(values, key):
    raw = values[key]
    try:
        number = int(str(raw).strip())
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if number <= 0:
        raise ValueError(f"{key} must be positive, got {number}")
    return number
