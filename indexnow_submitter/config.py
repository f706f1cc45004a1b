import json
import logging
import os
from typing import Dict, Optional, Any
from urllib.parse import urlparse, urlunparse

from indexnow_submitter import __version__
from indexnow_submitter.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = "config.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "user_agent": f"indexnow-submitter/{__version__}",
    "fetch_timeout": 60,
    "submit_timeout": 30,
    "max_retries": 3,
    "download_delay": 0.5,
    "database_path": os.path.join("data", "indexnow.db"),
    "data_directory": "data",
    "change_log": True,
}

NUMERIC_KEYS = ["fetch_timeout", "submit_timeout", "max_retries", "download_delay"]
PATH_KEYS = ["database_path", "data_directory"]


def load_config(path: str = CONFIG_FILE_PATH) -> Optional[Dict[str, Any]]:
    """Loads the configuration from config.json, merged over the defaults."""
    if not os.path.exists(path):
        logger.warning(f"Configuration file not found: {path}. Using defaults.")
        return dict(DEFAULT_CONFIG)
    try:
        with open(path, 'r') as f:
            config_data = json.load(f)
        logger.info(f"Successfully loaded configuration from {path}")
        if not validate_config(config_data):
            return None
        return {**DEFAULT_CONFIG, **config_data}
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {path}: {e}")
        return None
    except OSError as e:
        logger.error(f"Could not read configuration file {path}: {e}")
        return None


def validate_config(config: Dict[str, Any]) -> bool:
    """Validates the structure and content of the configuration."""
    if not isinstance(config, dict):
        logger.error("Configuration must be a dictionary.")
        return False

    for key in NUMERIC_KEYS:
        if key not in config:
            continue
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            logger.error(f"'{key}' must be a non-negative number, got {value!r}.")
            return False

    for key in PATH_KEYS:
        if key in config and (not isinstance(config[key], str) or not config[key].strip()):
            logger.error(f"'{key}' must be a non-empty string.")
            return False

    if "user_agent" in config and (not isinstance(config["user_agent"], str) or not config["user_agent"].strip()):
        logger.warning("'user_agent' is not a non-empty string. The default will be used.")
        config.pop("user_agent")

    if "change_log" in config and not isinstance(config["change_log"], bool):
        logger.error("'change_log' must be true or false.")
        return False

    logger.info("Configuration validation successful.")
    return True


# =============================================================================
# SOURCE URL HELPERS
# =============================================================================

def normalize_source_url(url: str) -> str:
    """
    Returns the https form of a feed or sitemap URL.

    A missing scheme gets https:// prepended and http is upgraded. Any other
    scheme, or a URL without a host, raises ConfigError.
    """
    url = (url or "").strip()
    if not url:
        raise ConfigError("Source URL must not be empty")

    if "://" not in url:
        url = f"https://{url}"
        logger.info(f"Added HTTPS prefix: {url}")

    parsed = urlparse(url)
    if parsed.scheme == "http":
        parsed = parsed._replace(scheme="https")
        logger.info(f"Auto-upgraded to HTTPS: {urlunparse(parsed)}")
    elif parsed.scheme != "https":
        raise ConfigError(f"URL must use HTTP or HTTPS, got: {parsed.scheme}")

    if not parsed.hostname:
        raise ConfigError(f"URL must have a valid host: {url}")

    return urlunparse(parsed)


def extract_host(url: str) -> Optional[str]:
    """Host name of a URL, or None when it has none."""
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def mask_key(key: str) -> str:
    if not key:
        return "(not set)"
    if len(key) <= 8:
        return f"{key[:2]}***"
    return f"{key[:4]}...{key[-4:]}"

