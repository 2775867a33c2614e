import json
import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

DEFAULT_CONFIG_FILE_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'configs', 'analysis_balance.json'
)
CONFIG_FILE_PATH = os.getenv('DERBY_ANALYTICS_CONFIG', DEFAULT_CONFIG_FILE_PATH)


def load_config(path=None):
    """
    Loads the analysis balance config file.
    Returns None when the file is missing or unreadable so callers fall back to built-in defaults.
    """
    path = path or CONFIG_FILE_PATH
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except FileNotFoundError:
        logger.warning("Config file not found at %s; using built-in defaults", path)
        return None
    except (OSError, ValueError) as e:
        logger.warning("Could not parse config file %s (%s); using built-in defaults", path, e)
        return None
    if not isinstance(config, dict):
        logger.warning("Config file %s does not hold an object; using built-in defaults", path)
        return None
    return config


# Load the config ONCE when the module is first imported
ANALYSIS_CONFIG = load_config()


def get_config(key_path, default=None):
    """
    Safely gets a value from the loaded config using a 'dot.path'.
    Example: get_config('spurt_model.timing_tolerance')
    """
    if not ANALYSIS_CONFIG:
        return default

    try:
        value = ANALYSIS_CONFIG
        for key in key_path.split('.'):
            value = value[key]
        return value
    except (KeyError, TypeError):
        logger.debug("Config key %s not set; using default %r", key_path, default)
        return default
