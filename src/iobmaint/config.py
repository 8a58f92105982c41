"""Configuration loader for iobmaint.

Values are merged from multiple sources, lowest precedence first:

1. Built-in defaults (mirroring the stock ioBroker container layout).
2. ``/etc/iobmaint/config.yml`` (or the path in ``IOBMAINT_CONFIG_FILE``).
3. Environment variables prefixed with ``IOBMAINT_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export IOBMAINT_PROCESSES__STOP_TIMEOUT=20
    export IOBMAINT_DELAYS__BEFORE_STOP=0

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load iobmaint configuration. Install with "
        "`pip install iobmaint` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "IOBMAINT_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ProcessConfig:
    """Patterns, signals and timings used to stop ioBroker."""

    primary_pattern: str = "iobroker.js-controller[^/]*$"
    component_pattern: str = r"io\.."
    stop_timeout: float = 10.0
    poll_interval: float = 1.0
    kill_by_name_wait: float = 3.0
    graceful_signal: str = "TERM"
    forced_signal: str = "KILL"
    pkill_bin: str = "pkill"
    pgrep_bin: str = "pgrep"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "primary_pattern": self.primary_pattern,
            "component_pattern": self.component_pattern,
            "stop_timeout": self.stop_timeout,
            "poll_interval": self.poll_interval,
            "kill_by_name_wait": self.kill_by_name_wait,
            "graceful_signal": self.graceful_signal,
            "forced_signal": self.forced_signal,
            "pkill_bin": self.pkill_bin,
            "pgrep_bin": self.pgrep_bin,
        }


@dataclass(frozen=True)
class IoBrokerConfig:
    """Location of the ioBroker CLI and the controller component name."""

    bin: str = "iobroker"
    controller_component: str = "js-controller"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"bin": self.bin, "controller_component": self.controller_component}


@dataclass(frozen=True)
class BackupConfig:
    """Backup directory and archive metadata layout."""

    root: Path
    metadata_member: str
    controller_title: str
    restore_log: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "metadata_member": self.metadata_member,
            "controller_title": self.controller_title,
            "restore_log": str(self.restore_log),
        }


@dataclass(frozen=True)
class DelayConfig:
    """Fixed pauses (seconds) between maintenance steps."""

    after_maintenance: float = 1.0
    between_steps: float = 1.0
    before_stop: float = 5.0
    restore_notice: float = 10.0
    restore_final: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "after_maintenance": self.after_maintenance,
            "between_steps": self.between_steps,
            "before_stop": self.before_stop,
            "restore_notice": self.restore_notice,
            "restore_final": self.restore_final,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for iobmaint."""

    config_file: Path
    healthcheck_file: Path
    service_user: str
    allow_root: bool
    logs_dir: Path
    runtime_dir: Path
    lock_timeout: float
    processes: ProcessConfig
    iobroker: IoBrokerConfig
    backups: BackupConfig
    delays: DelayConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "healthcheck_file": str(self.healthcheck_file),
            "service_user": self.service_user,
            "allow_root": self.allow_root,
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "lock_timeout": self.lock_timeout,
            "processes": self.processes.to_dict(),
            "iobroker": self.iobroker.to_dict(),
            "backups": self.backups.to_dict(),
            "delays": self.delays.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/iobmaint/config.yml",
    "healthcheck_file": "/opt/.docker_config/.healthcheck",
    "service_user": "iobroker",
    "allow_root": False,
    "logs_dir": "/opt/iobroker/log/maintenance",
    "runtime_dir": "/opt/.docker_config",
    "lock_timeout": 5.0,
    "processes": {
        "primary_pattern": "iobroker.js-controller[^/]*$",
        "component_pattern": r"io\..",
        "stop_timeout": 10.0,
        "poll_interval": 1.0,
        "kill_by_name_wait": 3.0,
        "graceful_signal": "TERM",
        "forced_signal": "KILL",
        "pkill_bin": "pkill",
        "pgrep_bin": "pgrep",
    },
    "iobroker": {
        "bin": "iobroker",
        "controller_component": "js-controller",
    },
    "backups": {
        "root": "/opt/iobroker/backups",
        "metadata_member": "backup/backup.json",
        "controller_title": "JS controller",
        "restore_log": "/opt/iobroker/log/restore.log",
    },
    "delays": {
        "after_maintenance": 1.0,
        "between_steps": 1.0,
        "before_stop": 5.0,
        "restore_notice": 10.0,
        "restore_final": 10.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_NESTED_SECTIONS = ("processes", "iobroker", "backups", "delays")


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, str(path))


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown:
        keys = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown configuration keys: {keys}.")

    for section in _NESTED_SECTIONS:
        if not isinstance(raw.get(section), Mapping):
            raise ConfigError(f"Expected {section} to be a mapping.")
        values = _as_dict(raw.get(section), section)
        defaults = _as_dict(DEFAULTS[section], section)
        extra = set(values.keys()) - set(defaults.keys())
        if extra:
            keys = ", ".join(f"{section}.{key}" for key in sorted(extra))
            raise ConfigError(f"Unknown configuration keys: {keys}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    processes_raw = _as_dict(raw.get("processes"), "processes")
    iobroker_raw = _as_dict(raw.get("iobroker"), "iobroker")
    backups_raw = _as_dict(raw.get("backups"), "backups")
    delays_raw = _as_dict(raw.get("delays"), "delays")

    processes = ProcessConfig(
        primary_pattern=_expect_str(processes_raw["primary_pattern"], "processes.primary_pattern"),
        component_pattern=_expect_str(
            processes_raw["component_pattern"], "processes.component_pattern"
        ),
        stop_timeout=_expect_positive_float(
            processes_raw.get("stop_timeout"), "processes.stop_timeout", default=10.0
        ),
        poll_interval=_expect_positive_float(
            processes_raw.get("poll_interval"), "processes.poll_interval", default=1.0
        ),
        kill_by_name_wait=_expect_delay(
            processes_raw.get("kill_by_name_wait"), "processes.kill_by_name_wait", default=3.0
        ),
        graceful_signal=_expect_signal(
            processes_raw["graceful_signal"], "processes.graceful_signal"
        ),
        forced_signal=_expect_signal(processes_raw["forced_signal"], "processes.forced_signal"),
        pkill_bin=_expect_str(processes_raw["pkill_bin"], "processes.pkill_bin"),
        pgrep_bin=_expect_str(processes_raw["pgrep_bin"], "processes.pgrep_bin"),
    )

    iobroker = IoBrokerConfig(
        bin=_expect_str(iobroker_raw["bin"], "iobroker.bin"),
        controller_component=_expect_str(
            iobroker_raw["controller_component"], "iobroker.controller_component"
        ),
    )

    backups = BackupConfig(
        root=_to_path(backups_raw["root"]),
        metadata_member=_expect_str(backups_raw["metadata_member"], "backups.metadata_member"),
        controller_title=_expect_str(backups_raw["controller_title"], "backups.controller_title"),
        restore_log=_to_path(backups_raw["restore_log"]),
    )

    delays = DelayConfig(
        **{
            key: _expect_delay(delays_raw.get(key), f"delays.{key}", default=float(default))
            for key, default in _as_dict(DEFAULTS["delays"], "delays").items()
            if isinstance(default, (int, float))
        }
    )

    return AppConfig(
        config_file=_to_path(raw["config_file"]),
        healthcheck_file=_to_path(raw["healthcheck_file"]),
        service_user=_expect_str(raw["service_user"], "service_user"),
        allow_root=_expect_bool(raw.get("allow_root"), "allow_root"),
        logs_dir=_to_path(raw["logs_dir"]),
        runtime_dir=_to_path(raw["runtime_dir"]),
        lock_timeout=_expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=5.0),
        processes=processes,
        iobroker=iobroker,
        backups=backups,
        delays=delays,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_bool(value: object | None, label: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_signal(value: object, label: str) -> str:
    name = _expect_str(value, label).strip().upper()
    if name.startswith("SIG"):
        name = name[3:]
    if not name:
        raise ConfigError(f"{label} must name a signal.")
    return name


def _as_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _as_number(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_delay(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    numeric = _as_number(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "ConfigError",
    "DelayConfig",
    "IoBrokerConfig",
    "ProcessConfig",
    "load_config",
]
