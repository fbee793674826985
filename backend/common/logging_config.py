"""
Logging configuration for the Django application.

This module provides:
- Centralized logging configuration
- File rotation for log files
- Separate audit log for the return/refund lifecycle
- Separate log for outbound carrier and payment gateway calls
- Environment-aware logging levels
"""

import sys
import logging
from pathlib import Path
from backend.settings.env_config import EnvironmentConfig

IS_WINDOWS = sys.platform.startswith('win')

BASE_DIR = Path(__file__).resolve().parents[1]
LOGS_DIR = BASE_DIR / 'backend' / 'logs'

LOGS_DIR.mkdir(parents=True, exist_ok=True)

RETURNS_AUDIT_LOGGER = 'returns_audit'

MB = 1024 * 1024


def _file_handler(filename, level, formatter='verbose', max_mb=10, backups=10, days=30):
    """
    Build a rotating file handler definition.

    Windows cannot rename files held open by other processes, so it rotates
    by time instead of by size.
    """
    if IS_WINDOWS:
        return {
            'level': level,
            'class': 'logging.handlers.TimedRotatingFileHandler',
            'filename': str(LOGS_DIR / filename),
            'when': 'midnight',
            'interval': 1,
            'backupCount': days,
            'formatter': formatter,
            'encoding': 'utf-8',
        }
    return {
        'level': level,
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': str(LOGS_DIR / filename),
        'maxBytes': max_mb * MB,
        'backupCount': backups,
        'formatter': formatter,
        'encoding': 'utf-8',
    }


def get_logging_config():
    """
    Get the logging configuration dictionary for Django.

    Example in settings.py:
        from common.logging_config import get_logging_config
        LOGGING = get_logging_config()

    Returns:
        dict: Logging configuration for Django
    """
    def _resolve_level(env_key: str, default: str) -> str:
        val = (EnvironmentConfig.get_env(env_key, '') or '').strip().upper()
        return val or default

    default_level = _resolve_level('LOG_LEVEL', 'INFO')
    django_level = _resolve_level('DJANGO_LOG_LEVEL', default_level)
    db_level = _resolve_level('DB_LOG_LEVEL', 'INFO')
    integrations_debug_enabled = EnvironmentConfig.get_bool('INTEGRATIONS_API_DEBUG', False)

    app_handlers = ['console', 'file', 'error_file']

    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'verbose': {
                'format': '[{levelname}] {asctime} {name} {funcName}:{lineno} - {message}',
                'style': '{',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
            'simple': {
                'format': '[{levelname}] {asctime} {name} - {message}',
                'style': '{',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
            'audit': {
                'format': '[AUDIT] {asctime} {name} - {message}',
                'style': '{',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': {
            'console': {
                'level': default_level,
                'class': 'logging.StreamHandler',
                'formatter': 'simple',
            },
            'file': _file_handler('app.log', default_level),
            'error_file': _file_handler('error.log', 'ERROR'),
            'returns_audit': _file_handler(
                'returns_audit.log', 'INFO', formatter='audit', max_mb=50, backups=20, days=90,
            ),
            'integrations_file': _file_handler(
                'integrations.log', 'DEBUG' if integrations_debug_enabled else 'INFO',
            ),
            'db_queries': _file_handler('db_queries.log', 'DEBUG', backups=5, days=7),
        },
        'loggers': {
            'django': {
                'handlers': app_handlers,
                'level': django_level,
                'propagate': False,
            },
            'django.request': {
                'handlers': app_handlers,
                'level': 'WARNING',
                'propagate': False,
            },
            'django.db.backends': {
                # Query logging only when DB_LOG_LEVEL=DEBUG
                'handlers': ['db_queries'] if db_level == 'DEBUG' else [],
                'level': db_level,
                'propagate': False,
            },
            RETURNS_AUDIT_LOGGER: {
                'handlers': ['console', 'returns_audit', 'error_file'],
                'level': 'INFO',
                'propagate': False,
            },
            'integrations': {
                'handlers': app_handlers + ['integrations_file'],
                'level': 'DEBUG' if integrations_debug_enabled else default_level,
                'propagate': False,
            },
        },
    }

    for app_logger in ('backend', 'common', 'users', 'orders', 'returns'):
        config['loggers'][app_logger] = {
            'handlers': app_handlers,
            'level': default_level,
            'propagate': False,
        }

    return config


def get_returns_audit_logger():
    """
    Get the audit logger for the return/refund lifecycle.

    Example:
        from common.logging_config import get_returns_audit_logger
        audit_logger = get_returns_audit_logger()
        audit_logger.info(f'Return {return_number} settled')
    """
    return logging.getLogger(RETURNS_AUDIT_LOGGER)
