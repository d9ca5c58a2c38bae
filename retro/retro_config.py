from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import yaml

DEFAULT_AUTOEXEC_PATHS: Tuple[str, ...] = (
    "C:/Windows/autoexec.retro",
    "C:/Scripts/autoexec.retro",
    "C:/Users/User/autoexec.retro",
)

_FORMATS_BY_SUFFIX = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
}


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode("utf-8", errors="replace")
    return str(data)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def detect_format(path: str | os.PathLike) -> Optional[str]:
    """Canonical format name ('json', 'yaml', 'toml') from a file suffix."""
    return _FORMATS_BY_SUFFIX.get(Path(path).suffix.lower())


def deserialize(data: bytes | bytearray | str, *, fmt: str) -> Any:
    """
    Convert configuration text to plain Python structures.
    Supported fmt: 'json', 'yaml', 'toml'.
    """
    text = _norm_text(data)
    match fmt:
        case 'json':
            return json.loads(text)
        case 'yaml':
            return yaml.safe_load(text)
        case 'toml':
            return tomllib.loads(text)
    raise ValueError(f"Unsupported configuration format: {fmt!r}")


# --------------------------
# Engine configuration
# --------------------------

@dataclass(frozen=True)
class EngineConfig:
    """Tunables for a ScriptEngine. Every field has a working default."""
    default_wait_ms: float = 1000
    max_loop_iterations: int = 100000
    autoexec_paths: Tuple[str, ...] = field(default=DEFAULT_AUTOEXEC_PATHS)
    echo_output: bool = False
    debug: bool = False

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "EngineConfig":
        """Build a config from a mapping; an optional `retro` section is unwrapped."""
        data = dict(data or {})
        if isinstance(data.get("retro"), Mapping):
            data = dict(data["retro"])
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        kwargs = {}
        if "default_wait_ms" in data:
            kwargs["default_wait_ms"] = float(data["default_wait_ms"])
        if "max_loop_iterations" in data:
            kwargs["max_loop_iterations"] = int(data["max_loop_iterations"])
        if "autoexec_paths" in data:
            paths = data["autoexec_paths"]
            if isinstance(paths, str):
                paths = [paths]
            kwargs["autoexec_paths"] = tuple(str(p) for p in paths)
        if "echo_output" in data:
            kwargs["echo_output"] = _as_bool(data["echo_output"])
        if "debug" in data:
            kwargs["debug"] = _as_bool(data["debug"])
        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> "EngineConfig":
        fmt = detect_format(path)
        if fmt is None:
            raise ValueError(f"Cannot tell the configuration format of {str(path)!r}")
        with open(path, "rb") as f:
            data = deserialize(f.read(), fmt=fmt)
        return cls.from_mapping(data)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Apply RETRO_MAX_LOOP_ITERS / RETRO_DEBUG overrides from the environment."""
        environ = os.environ if environ is None else environ
        changes = {}
        max_iters = environ.get("RETRO_MAX_LOOP_ITERS")
        if max_iters:
            changes["max_loop_iterations"] = int(max_iters)
        if environ.get("RETRO_DEBUG"):
            changes["debug"] = _as_bool(environ["RETRO_DEBUG"])
        return replace(self, **changes) if changes else self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        return cls().with_env(environ)


__all__ = [
    "EngineConfig",
    "DEFAULT_AUTOEXEC_PATHS",
    "deserialize",
    "detect_format",
]
