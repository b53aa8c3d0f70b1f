# config.py
# Description: Configuration settings for the docsync server application.
#
# Imports
import configparser
import os
from pathlib import Path
from typing import Optional, Dict, Any
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Constants ---
DEFAULT_SINGLE_USER_API_KEY = "default-secret-key-for-single-user"
DEFAULT_JWT_SECRET_KEY = "a_very_insecure_default_secret_key_for_dev_only"

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_FILE = PROJECT_ROOT / "Config_Files" / "config.txt"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_config_file(config_path: Optional[Path] = None) -> Optional[configparser.ConfigParser]:
    """
    Reads the optional INI config file. A missing file is not an error; environment
    variables and defaults are used instead.
    """
    config_path = Path(config_path or os.getenv("DOCSYNC_CONFIG_FILE", DEFAULT_CONFIG_FILE))
    if not config_path.exists():
        logger.debug(f"No config file at {config_path}; using environment/defaults only.")
        return None

    config_parser = configparser.ConfigParser()
    try:
        config_parser.read(config_path)
    except configparser.Error as e:
        logger.error(f"Error parsing config file {config_path}: {e}")
        raise
    logger.info(f"Loaded config file {config_path}. Sections: {config_parser.sections()}")
    return config_parser


def load_settings(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Loads all settings from the config file, environment variables, or defaults into a dictionary."""
    parser = load_config_file(config_path)

    def _get(section: str, key: str, env_name: str, default: str) -> str:
        # Environment wins over the config file, the config file wins over defaults
        env_value = os.getenv(env_name)
        if env_value is not None:
            return env_value
        if parser is not None:
            return parser.get(section, key, fallback=default)
        return default

    # --- Application Mode ---
    app_mode_str = _get("Server", "app_mode", "APP_MODE", "single").lower()
    single_user_mode = app_mode_str != "multi"

    # --- Single-User Settings ---
    single_user_fixed_id = int(_get("Server", "single_user_fixed_id", "SINGLE_USER_FIXED_ID", "1"))
    single_user_api_key = _get("Server", "api_key", "API_KEY", DEFAULT_SINGLE_USER_API_KEY)
    single_user_email = _get("Server", "single_user_email", "SINGLE_USER_EMAIL", "single_user@localhost")

    # --- Multi-User Settings (JWT) ---
    jwt_secret_key = _get("Server", "jwt_secret_key", "JWT_SECRET_KEY", DEFAULT_JWT_SECRET_KEY)
    jwt_algorithm = "HS256"

    # --- Database Settings ---
    sync_db_path = Path(_get("Sync", "db_path", "SYNC_DB_PATH", "./docsync_data/databases/docsync.sqlite"))

    # --- HTTP ---
    allowed_origins_raw = _get("Server", "allowed_origins", "ALLOWED_ORIGINS", "")
    allowed_origins = [o.strip() for o in allowed_origins_raw.split(",") if o.strip()]
    frontend_url = _get("Server", "frontend_url", "FRONTEND_URL", "http://localhost:3000").rstrip("/")

    # --- Sync ---
    default_page_size = int(_get("Sync", "default_page_size", "SYNC_DEFAULT_PAGE_SIZE", "50"))
    max_page_size = int(_get("Sync", "max_page_size", "SYNC_MAX_PAGE_SIZE", "500"))
    op_log_page_size = int(_get("Sync", "operation_log_page_size", "SYNC_OPERATION_LOG_PAGE_SIZE", "500"))
    embedding_dims_raw = _get("Sync", "embedding_dimensions", "EMBEDDING_DIMENSIONS", "")
    embedding_dimensions = int(embedding_dims_raw) if embedding_dims_raw.strip() else None

    # --- Logging ---
    log_level = _get("Server", "log_level", "LOG_LEVEL", "INFO").upper()

    config_dict = {
        # General App
        "APP_MODE_STR": app_mode_str,
        "SINGLE_USER_MODE": single_user_mode,
        "LOG_LEVEL": log_level,

        # Single User
        "SINGLE_USER_FIXED_ID": single_user_fixed_id,
        "SINGLE_USER_API_KEY": single_user_api_key,
        "SINGLE_USER_EMAIL": single_user_email,

        # Multi User / Auth
        "JWT_SECRET_KEY": jwt_secret_key,
        "JWT_ALGORITHM": jwt_algorithm,

        # Database
        "SYNC_DB_PATH": sync_db_path,

        # HTTP
        "ALLOWED_ORIGINS": allowed_origins,
        "FRONTEND_URL": frontend_url,

        # Sync
        "SYNC_DEFAULT_PAGE_SIZE": default_page_size,
        "SYNC_MAX_PAGE_SIZE": max_page_size,
        "SYNC_OPERATION_LOG_PAGE_SIZE": op_log_page_size,
        "EMBEDDING_DIMENSIONS": embedding_dimensions,
    }

    # --- Warnings ---
    if config_dict["SINGLE_USER_MODE"] and config_dict["SINGLE_USER_API_KEY"] == DEFAULT_SINGLE_USER_API_KEY:
        logger.warning("Using default API_KEY for single-user mode. Set the API_KEY environment variable for security.")
    if not config_dict["SINGLE_USER_MODE"] and config_dict["JWT_SECRET_KEY"] == DEFAULT_JWT_SECRET_KEY:
        logger.warning("SECURITY WARNING: Using default JWT_SECRET_KEY in multi-user mode. Set a strong JWT_SECRET_KEY!")

    return config_dict


# --- Global Settings Object ---
# Load the settings when the module is imported
settings = load_settings()

#
# End of config.py
########################################################################################################################
