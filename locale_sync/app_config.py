"""Application configuration module for the localization sync service."""
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Tuple

import yaml
from dotenv import load_dotenv

from locale_sync.logging_config import setup_logger

DEFAULT_STORAGE_BUCKET = 'i18ndemo'
DEFAULT_LANG = 'en'

REQUIRED_ENV_VARS = (
    'LOKALISE_WEBHOOK_SECRET',
    'LOKALISE_API_KEY',
    'LOKALISE_PROJECT_ID',
    'SUPABASE_URL',
    'SUPABASE_KEY',
)


@dataclass
class AppConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    staging_folder: str
    source_locales_folder: str

    # Secrets and remote endpoints
    webhook_secret: str
    lokalise_api_key: str
    lokalise_project_id: str
    supabase_url: str
    supabase_key: str
    storage_bucket: str

    # Language configuration
    default_lang: str
    supported_langs: Tuple[str, ...]

    # Network and publish settings
    http_timeout_seconds: float = 30.0
    max_concurrent_uploads: int = 4
    cache_control: str = 'max-age=3600'
    upload_tag_prefix: str = 'api'
    upload_poll_interval_seconds: float = 2.0
    upload_poll_timeout_seconds: float = 120.0


def is_lang_supported(config: AppConfig, lang: str) -> bool:
    """Check a language code against the configured supported set."""
    return lang.strip().lower() in config.supported_langs


def _compute_project_root() -> str:
    """The directory holding the ``locale_sync`` package."""
    return os.path.dirname(os.path.dirname(os.path.realpath(__file__)))


def _load_dotenv_files(project_root: str) -> Optional[str]:
    """Load the first ``.env`` found, project root before ``docker/``, and return its path."""
    for candidate in (os.path.join(project_root, '.env'), os.path.join(project_root, 'docker', '.env')):
        if os.path.exists(candidate):
            load_dotenv(candidate)
            return candidate
    return None


def _settings_file_path(project_root: str) -> str:
    return os.path.abspath(os.environ.get('LOCALE_SYNC_CONFIG_FILE') or os.path.join(project_root, 'config.yaml'))


def _load_yaml_config(project_root: str, problems: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Read the optional YAML settings file.

    An absent, unreadable or malformed file means built-in defaults. Logging is
    not configured yet at this point, so problems are appended to ``problems``
    for the caller to log afterwards.
    """
    if problems is None:
        problems = []
    path = _settings_file_path(project_root)
    if not os.path.exists(path):
        problems.append(f"No settings file at '{path}'; using defaults.")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as stream:
            settings = yaml.safe_load(stream)
    except yaml.YAMLError as exc:
        problems.append(f"Settings file '{path}' is not valid YAML; using defaults. {exc}")
        return {}
    except OSError as exc:
        problems.append(f"Settings file '{path}' could not be read; using defaults. {exc}")
        return {}

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        problems.append(f"Settings file '{path}' must hold a mapping, not {type(settings).__name__}; using defaults.")
        return {}
    return settings


def _logger_from_settings(settings: Dict[str, Any]) -> logging.Logger:
    log_settings = settings.get('logging') or {}
    return setup_logger(
        str(log_settings.get('log_level', 'INFO')),
        log_settings.get('log_file_path', 'logs/locale_sync.log'),
        bool(log_settings.get('log_to_console', True)),
    )


def parse_supported_langs(raw: Optional[str]) -> List[str]:
    """
    Parse a comma separated language list into normalized codes.

    Blank entries are dropped and duplicates collapse to their first occurrence.
    An unset or blank value yields the default language only.
    """
    if not raw or not raw.strip():
        return [DEFAULT_LANG]
    langs: List[str] = []
    for part in raw.split(','):
        code = part.strip().lower()
        if code and code not in langs:
            langs.append(code)
    return langs or [DEFAULT_LANG]


def _require_env(name: str, logger: logging.Logger) -> str:
    value = os.environ.get(name, '').strip()
    if not value:
        logger.critical("CRITICAL: %s environment variable not found.", name)
        logger.critical("Set it in the environment or in a .env file at the project root.")
        sys.exit(1)
    return value


def load_app_config() -> AppConfig:
    """
    Load application configuration from the YAML file and environment variables.

    Secrets and the locale list always come from the environment; the YAML file
    only tunes paths, timeouts and logging. A missing secret or a default
    language outside the supported set stops the process.

    Returns:
        AppConfig: The loaded application configuration.
    """
    project_root = _compute_project_root()
    _load_dotenv_files(project_root)
    problems: List[str] = []
    config = _load_yaml_config(project_root, problems)
    logger = _logger_from_settings(config)
    for problem in problems:
        logger.warning(problem)

    secrets = {name: _require_env(name, logger) for name in REQUIRED_ENV_VARS}

    default_lang = (os.environ.get('DEFAULT_LANG') or DEFAULT_LANG).strip().lower()
    supported_langs = parse_supported_langs(os.environ.get('SUPPORTED_LANGS'))
    if default_lang not in supported_langs:
        logger.critical(
            "CRITICAL: DEFAULT_LANG '%s' must be one of [%s].",
            default_lang, ', '.join(supported_langs)
        )
        sys.exit(1)

    # Staging lives in the system temp dir; it is wiped at the start of every sync
    staging_name = config.get('staging_folder', 'locale_sync_staging')
    staging_folder = staging_name if os.path.isabs(staging_name) else os.path.join(tempfile.gettempdir(), staging_name)

    source_locales_folder = config.get('source_locales_folder', os.path.join('app', 'locales'))
    if not os.path.isabs(source_locales_folder):
        source_locales_folder = os.path.join(project_root, source_locales_folder)

    storage_bucket = os.environ.get('STORAGE_BUCKET', config.get('storage_bucket', DEFAULT_STORAGE_BUCKET))

    logger.info(
        "Configuration loaded: bucket=%s, default_lang=%s, supported_langs=%s",
        storage_bucket, default_lang, ','.join(supported_langs)
    )

    return AppConfig(
        project_root=project_root,
        staging_folder=staging_folder,
        source_locales_folder=source_locales_folder,
        webhook_secret=secrets['LOKALISE_WEBHOOK_SECRET'],
        lokalise_api_key=secrets['LOKALISE_API_KEY'],
        lokalise_project_id=secrets['LOKALISE_PROJECT_ID'],
        supabase_url=secrets['SUPABASE_URL'].rstrip('/'),
        supabase_key=secrets['SUPABASE_KEY'],
        storage_bucket=storage_bucket,
        default_lang=default_lang,
        supported_langs=tuple(supported_langs),
        http_timeout_seconds=float(config.get('http_timeout_seconds', 30.0)),
        max_concurrent_uploads=int(config.get('max_concurrent_uploads', 4)),
        cache_control=config.get('cache_control', 'max-age=3600'),
        upload_tag_prefix=config.get('upload_tag_prefix', 'api'),
        upload_poll_interval_seconds=float(config.get('upload_poll_interval_seconds', 2.0)),
        upload_poll_timeout_seconds=float(config.get('upload_poll_timeout_seconds', 120.0)),
    )
