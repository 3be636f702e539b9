"""Settings resolution: environment variables override the config file.

The config file is a ZConfig document validated against ``schema.xml``::

    max-retries 5
    base-delay 2s
    max-delay 1m
    upload-timeout 5m
    retry-log true

Every resolver accepts the loaded section (or ``None``) and an optional
environment mapping, so callers resolve once per process and tests can pass
both explicitly.
"""

from asc_transfer.errors import ConfigurationError
from asc_transfer.retry import DEFAULT_BASE_DELAY
from asc_transfer.retry import DEFAULT_MAX_DELAY
from asc_transfer.retry import DEFAULT_MAX_RETRIES
from asc_transfer.retry import RetryPolicy

import logging
import os
import ZConfig
import ZConfig.datatypes


logger = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.xml")

DEFAULT_TIMEOUT = 30.0
DEFAULT_UPLOAD_TIMEOUT = 60.0

_time_interval = ZConfig.datatypes.Registry().get("time-interval")
_schema = None


def _load_schema():
    global _schema
    if _schema is None:
        _schema = ZConfig.loadSchema(SCHEMA_PATH)
    return _schema


def load_config(path):
    """Load and validate a settings file, returning the ZConfig section."""
    try:
        config, _handlers = ZConfig.loadConfig(_load_schema(), path)
    except ZConfig.ConfigurationError as e:
        logger.debug("Loading %s failed: %s", path, e)
        raise ConfigurationError(f"invalid settings file {path}: {e}") from e
    return config


def _env_value(environ, name):
    """Return (value, present) for an environment variable, stripped."""
    if environ is None:
        environ = os.environ
    if name not in environ:
        return "", False
    return environ[name].strip(), True


def _parse_interval(value):
    seconds = float(_time_interval(value))
    if seconds <= 0:
        raise ValueError(f"interval must be positive: {value!r}")
    return seconds


def _override(environ, name, parse, file_value, default):
    """Env (when set) wins over the file value, which wins over the default.

    Unparseable or out-of-range values are ignored and the default kept.
    """
    value, present = _env_value(environ, name)
    if present:
        if not value:
            return default
        try:
            return parse(value)
        except ValueError:
            logger.debug("Ignoring invalid %s=%r", name, value)
            return default
    if file_value is None:
        return default
    try:
        return parse(str(file_value))
    except ValueError:
        logger.debug("Ignoring invalid config value %r for %s", file_value, name)
        return default


def _non_negative_int(value):
    parsed = int(value)
    if parsed < 0:
        raise ValueError(f"must not be negative: {value!r}")
    return parsed


def _positive_int_seconds(value):
    parsed = int(value)
    if parsed <= 0:
        raise ValueError(f"must be positive: {value!r}")
    return float(parsed)


def resolve_retry_policy(config=None, environ=None):
    return RetryPolicy(
        max_attempts=_override(
            environ,
            "ASC_MAX_RETRIES",
            _non_negative_int,
            getattr(config, "max_retries", None),
            DEFAULT_MAX_RETRIES,
        ),
        base_delay=_override(
            environ,
            "ASC_BASE_DELAY",
            _parse_interval,
            getattr(config, "base_delay", None),
            DEFAULT_BASE_DELAY,
        ),
        max_delay=_override(
            environ,
            "ASC_MAX_DELAY",
            _parse_interval,
            getattr(config, "max_delay", None),
            DEFAULT_MAX_DELAY,
        ),
        log_retries=resolve_retry_log_enabled(config, environ),
    )


def _resolve_timeout(config, environ, attr, interval_env, seconds_env, default):
    if _env_value(environ, interval_env)[1]:
        return _override(environ, interval_env, _parse_interval, None, default)
    if _env_value(environ, seconds_env)[1]:
        return _override(environ, seconds_env, _positive_int_seconds, None, default)
    file_value = getattr(config, attr, None)
    return _override({}, interval_env, _parse_interval, file_value, default)


def resolve_timeout(config=None, environ=None):
    return _resolve_timeout(
        config, environ, "timeout", "ASC_TIMEOUT", "ASC_TIMEOUT_SECONDS",
        DEFAULT_TIMEOUT,
    )


def resolve_upload_timeout(config=None, environ=None):
    return _resolve_timeout(
        config, environ, "upload_timeout", "ASC_UPLOAD_TIMEOUT",
        "ASC_UPLOAD_TIMEOUT_SECONDS", DEFAULT_UPLOAD_TIMEOUT,
    )


def resolve_retry_log_enabled(config=None, environ=None):
    value, present = _env_value(environ, "ASC_RETRY_LOG")
    if present:
        return value != ""
    return bool(getattr(config, "retry_log", False))
