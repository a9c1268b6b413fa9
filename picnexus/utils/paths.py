"""
Application paths and INI defaults.

Everything lives under ~/.picnexus unless PICNEXUS_HOME is set (a .env file
in the working directory is honoured). The encrypted documents go into the
data directory, which defaults to <app dir>/data and can be moved with
PICNEXUS_DATA_DIR or [DEFAULTS] data_dir in picnexus.ini.
"""

import os
import configparser
from typing import Dict, Any

from dotenv import load_dotenv

from picnexus.core.constants import (
    APP_DIR_NAME, CONFIG_FILENAME, DEFAULT_MAX_CONCURRENT, BACKUP_TIMEOUT,
    WEBDAV_TIMEOUT,
)

load_dotenv()


def get_app_dir() -> str:
    """Return the application directory (~/.picnexus), creating it if needed."""
    base_dir = os.environ.get("PICNEXUS_HOME") or os.path.join(os.path.expanduser("~"), APP_DIR_NAME)
    os.makedirs(base_dir, exist_ok=True)
    return base_dir


def get_config_path() -> str:
    """Return the canonical path to the application's config file (~/.picnexus/picnexus.ini)."""
    return os.path.join(get_app_dir(), CONFIG_FILENAME)


def get_hosts_dir() -> str:
    """Directory holding user-supplied host definition JSON files."""
    return os.path.join(get_app_dir(), "hosts")


def load_app_defaults() -> Dict[str, Any]:
    """Load the [DEFAULTS] section of picnexus.ini with fallbacks."""
    config = configparser.ConfigParser()
    config_file = get_config_path()
    if os.path.exists(config_file):
        config.read(config_file, encoding="utf-8")

    defaults: Dict[str, Any] = {
        'data_dir': os.path.join(get_app_dir(), "data"),
        'max_concurrent': DEFAULT_MAX_CONCURRENT,
        'backup_timeout': BACKUP_TIMEOUT,
        'webdav_timeout': WEBDAV_TIMEOUT,
    }
    if 'DEFAULTS' in config:
        defaults['data_dir'] = config.get('DEFAULTS', 'data_dir', fallback=defaults['data_dir'])
        defaults['max_concurrent'] = config.getint('DEFAULTS', 'max_concurrent', fallback=DEFAULT_MAX_CONCURRENT)
        defaults['backup_timeout'] = config.getfloat('DEFAULTS', 'backup_timeout', fallback=BACKUP_TIMEOUT)
        defaults['webdav_timeout'] = config.getfloat('DEFAULTS', 'webdav_timeout', fallback=WEBDAV_TIMEOUT)

    env_data_dir = os.environ.get("PICNEXUS_DATA_DIR")
    if env_data_dir:
        defaults['data_dir'] = env_data_dir
    return defaults


def get_data_dir() -> str:
    """Return the directory holding the encrypted documents, creating it if needed."""
    data_dir = os.path.expanduser(load_app_defaults()['data_dir'])
    os.makedirs(data_dir, exist_ok=True)
    return data_dir


def get_logs_dir() -> str:
    logs_dir = os.path.join(get_app_dir(), "logs")
    os.makedirs(logs_dir, exist_ok=True)
    return logs_dir
