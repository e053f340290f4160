"""Hot-reloadable application configuration.

Sources, lowest to highest precedence:
  1. Built-in defaults (DEFAULTS)
  2. Environment variables (re-read from .env on every reload)
  3. Optional JSON file (CONFIG_FILE), snake_case keys

Every field is validated on its own; an invalid value logs a warning and falls
back to the default. A snapshot is never mutated: reload() builds a new one and
swaps the reference, so readers always see a complete configuration.
"""
import json
import logging
import math
import os
import threading
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from dotenv import load_dotenv

from facegate.infrastructure.scheduler import PeriodicTask

log = logging.getLogger("facegate.config")

DEFAULT_RELOAD_INTERVAL = 60  # seconds
MAX_TTL_MINUTES = 525600  # one year


@dataclass(frozen=True)
class AppConfig:
    max_failure_attempts: int = 5
    failure_reset_on_success: bool = True
    failure_record_ttl_minutes: int = 2
    capture_timeout_ms: int = 30000
    recognition_threshold: int = 70
    use_mock: bool = False
    face_api_url: str = ""
    face_api_key: str = ""
    debug_logging: bool = False

    def public_dict(self) -> dict:
        """Snapshot without secrets, safe for /api/config and logs."""
        data = asdict(self)
        data.pop("face_api_key")
        data["face_api_url"] = "[CONFIGURED]" if self.face_api_url else "[NOT SET]"
        data["face_api_key"] = "[CONFIGURED]" if self.face_api_key else "[NOT SET]"
        return data


DEFAULTS = AppConfig()

ENV_VARS = {
    "max_failure_attempts": "MAX_FAILURE_ATTEMPTS",
    "failure_reset_on_success": "FAILURE_RESET_ON_SUCCESS",
    "failure_record_ttl_minutes": "FAILURE_RECORD_TTL",
    "capture_timeout_ms": "CAPTURE_TIMEOUT",
    "recognition_threshold": "RECOGNITION_THRESHOLD",
    "use_mock": "USE_MOCK",
    "face_api_url": "FACE_API_URL",
    "face_api_key": "FACE_API_KEY",
    "debug_logging": "DEBUG_LOGGING",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


# ---------------------------------------------------------------------------
# Field parsing / validation
# ---------------------------------------------------------------------------

def _parse_int(raw, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(raw, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(raw, str):
        raw = raw.strip()
    if isinstance(raw, float) and not math.isfinite(raw):
        raise ValueError("not a finite number")
    value = int(raw)
    if isinstance(raw, float) and raw != value:
        raise ValueError("not a whole number")
    if minimum is not None and value < minimum:
        raise ValueError(f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValueError(f"must be <= {maximum}")
    return value


def _parse_bool(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError("not a boolean")


def _parse_str(raw) -> str:
    if not isinstance(raw, str):
        raise ValueError("not a string")
    return raw.strip()


_VALIDATORS = {
    "max_failure_attempts": lambda v: _parse_int(v, minimum=0),
    "failure_reset_on_success": _parse_bool,
    "failure_record_ttl_minutes": lambda v: _parse_int(v, minimum=1, maximum=MAX_TTL_MINUTES),
    "capture_timeout_ms": lambda v: _parse_int(v, minimum=1),
    "recognition_threshold": lambda v: _parse_int(v, minimum=0, maximum=100),
    "use_mock": _parse_bool,
    "face_api_url": lambda v: _parse_str(v).rstrip("/"),
    "face_api_key": _parse_str,
    "debug_logging": _parse_bool,
}


def _read_env(environ) -> dict:
    values = {}
    for name, var in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        values[name] = (raw, f"env {var}")
    return values


def _read_file(path: Path) -> dict:
    if not path.exists():
        log.warning("Configuration file not found: %s", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        log.error("Failed to load configuration file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        log.error("Configuration file %s must contain a JSON object", path)
        return {}
    known = {f.name for f in fields(AppConfig)}
    return {k: (v, f"file {path.name}") for k, v in data.items() if k in known}


def build_config(environ=None, config_file: str | os.PathLike | None = None) -> AppConfig:
    """Merge defaults, environment and file into a validated AppConfig."""
    environ = os.environ if environ is None else environ
    merged = _read_env(environ)
    if config_file:
        merged.update(_read_file(Path(config_file)))

    values = {}
    for name, (raw, source) in merged.items():
        try:
            values[name] = _VALIDATORS[name](raw)
        except (TypeError, ValueError, OverflowError) as exc:
            log.warning(
                "Invalid %s from %s (%s); using default %r",
                name, source, exc, getattr(DEFAULTS, name),
            )
    return AppConfig(**values)


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class ConfigurationService:
    """Owns the current AppConfig snapshot and its reload timer."""

    def __init__(
        self,
        config_file: str | os.PathLike | None = None,
        env_file: str | os.PathLike | None = None,
        environ=None,
    ):
        self._config_file = config_file
        self._env_file = Path(env_file) if env_file else None
        self._environ = environ
        self._reload_lock = threading.Lock()
        self._reloader: PeriodicTask | None = None
        self._listeners = []
        self._config = build_config(self._environ, self._config_file)
        log.info("Configuration loaded: %s", self._config.public_dict())

    # -- reads (never raise) -------------------------------------------------

    def get_configuration(self) -> AppConfig:
        return self._config

    def get_max_failure_attempts(self) -> int:
        """Current lockout threshold; 0 disables lockout."""
        return self._config.max_failure_attempts

    def get_failure_reset_on_success(self) -> bool:
        return self._config.failure_reset_on_success

    def get_failure_record_ttl_minutes(self) -> int:
        return self._config.failure_record_ttl_minutes

    def get_recognition_threshold(self) -> int:
        return self._config.recognition_threshold

    # -- reload --------------------------------------------------------------

    def reload(self) -> bool:
        """Re-read .env, environment and file; swap the snapshot.

        Returns True when the configuration changed.
        """
        with self._reload_lock:
            if self._env_file is not None and self._env_file.exists():
                load_dotenv(self._env_file, override=True)
            new_config = build_config(self._environ, self._config_file)
            old_config = self._config
            self._config = new_config

        changed = new_config != old_config
        if changed:
            log.info("Configuration reloaded: %s", new_config.public_dict())
            for listener in list(self._listeners):
                try:
                    listener(new_config)
                except Exception:
                    log.exception("Configuration listener %r failed", listener)
        else:
            log.debug("Configuration reload: no changes")
        return changed

    def add_listener(self, callback) -> None:
        """Call *callback(new_config)* after every reload that changed something."""
        self._listeners.append(callback)

    def start_auto_reload(self, interval: float = DEFAULT_RELOAD_INTERVAL) -> None:
        if self._reloader is not None and self._reloader.is_running():
            log.warning("Configuration auto-reload already started")
            return
        self._reloader = PeriodicTask(self.reload, interval, name="config-reload")
        self._reloader.start()
        log.info("Configuration auto-reload started (interval: %ss)", interval)

    def stop_auto_reload(self) -> None:
        if self._reloader is not None:
            self._reloader.stop()
            self._reloader = None
            log.info("Configuration auto-reload stopped")
