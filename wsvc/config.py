"""wsvc client configuration helpers.

Reads and writes two TOML files:

- global: ``$WSVC_CONFIG_HOME/config.toml`` (default ``~/.config/wsvc/``)
- local:  ``<store root>/config.toml`` (i.e. ``.wsvc/config.toml``)

Both are merged key by key; a value in the local file wins.

Supported keys:

- ``commit.author``      — author string written into records
- ``commit.auto_record`` — commit a dirty workspace before checkout
- ``auth.account``       — account sent in the sync handshake
- ``auth.password``      — password sent in the sync handshake (NEVER logged)
- ``remote.origin``      — default sync URL (``ws://host:port/sync``)
"""
from __future__ import annotations

import logging
import os
import pathlib
import tomllib
from dataclasses import dataclass

from wsvc.errors import ConfigError, IoFailure

logger = logging.getLogger(__name__)

_CONFIG_FILENAME = "config.toml"

KEYS: dict[str, type] = {
    "commit.author": str,
    "commit.auto_record": bool,
    "auth.account": str,
    "auth.password": str,
    "remote.origin": str,
}

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


@dataclass(frozen=True)
class WsvcConfig:
    """Effective configuration after merging global and local files."""

    author: str | None = None
    auto_record: bool = False
    account: str | None = None
    password: str | None = None
    origin: str | None = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def global_config_path() -> pathlib.Path:
    """Return the path of the user-wide config file (may not exist)."""
    if env_home := os.environ.get("WSVC_CONFIG_HOME"):
        return pathlib.Path(env_home) / _CONFIG_FILENAME
    return pathlib.Path.home() / ".config" / "wsvc" / _CONFIG_FILENAME


def local_config_path(store_root: pathlib.Path) -> pathlib.Path:
    """Return the path of the repository-local config file (may not exist)."""
    return store_root / _CONFIG_FILENAME


def _load_config(config_path: pathlib.Path) -> dict[str, object]:
    """Load and parse config.toml; return empty dict if absent or unreadable."""
    if not config_path.is_file():
        return {}
    try:
        with config_path.open("rb") as fh:
            return tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("⚠️ Failed to parse %s: %s", config_path, exc)
        return {}


_TOML_ESCAPES = {"\\": "\\\\", '"': '\\"', "\b": "\\b", "\t": "\\t", "\n": "\\n", "\f": "\\f", "\r": "\\r"}


def _toml_string(value: str) -> str:
    """Quote *value* as a TOML basic string."""
    out: list[str] = []
    for ch in value:
        if ch in _TOML_ESCAPES:
            out.append(_TOML_ESCAPES[ch])
        elif ch < " " or ch == "\x7f":
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def _dump_toml(data: dict[str, object]) -> str:
    """Serialize a one-level TOML dict (tables of str/bool values) to text.

    Sections are written in sorted order so the file is stable.
    """
    lines: list[str] = []
    for section in sorted(data):
        mapping = data[section]
        if not isinstance(mapping, dict) or not mapping:
            continue
        lines.append(f"[{section}]")
        for key in sorted(mapping):
            val = mapping[key]
            if isinstance(val, bool):
                lines.append(f"{key} = {'true' if val else 'false'}")
            else:
                lines.append(f"{key} = {_toml_string(str(val))}")
        lines.append("")
    return "\n".join(lines)


def _split_key(key: str) -> tuple[str, str]:
    if key not in KEYS:
        raise ConfigError(f"Unknown config key '{key}'. Known keys: {', '.join(sorted(KEYS))}")
    section, _, name = key.partition(".")
    return section, name


def _coerce(key: str, raw: object) -> object:
    """Coerce *raw* (a CLI string or a TOML value) to the type of *key*."""
    if KEYS[key] is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigError(f"'{key}' expects a boolean (true/false), got '{raw}'")
    return str(raw)


def _lookup(data: dict[str, object], key: str) -> object | None:
    section, name = _split_key(key)
    table = data.get(section)
    if isinstance(table, dict):
        return table.get(name)
    return None


def _write(config_path: pathlib.Path, data: dict[str, object]) -> None:
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(_dump_toml(data), encoding="utf-8")
    except OSError as exc:
        raise IoFailure("write config", config_path, exc) from exc


def _target_path(store_root: pathlib.Path | None, global_: bool) -> pathlib.Path:
    if global_:
        return global_config_path()
    if store_root is None:
        raise ConfigError("Not inside a wsvc repository; use --global")
    return local_config_path(store_root)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_value(key: str, store_root: pathlib.Path | None = None, *, global_: bool = False) -> object | None:
    """Return the value of *key*.

    With ``global_=True`` only the global file is read; otherwise the local
    value (if any) wins over the global one.
    """
    _split_key(key)
    sources = [global_config_path()]
    if not global_ and store_root is not None:
        sources.append(local_config_path(store_root))
    value: object | None = None
    for path in sources:
        found = _lookup(_load_config(path), key)
        if found is not None:
            value = _coerce(key, found)
    return value


def set_value(key: str, value: str | bool, store_root: pathlib.Path | None = None, *, global_: bool = False) -> pathlib.Path:
    """Write *key* = *value* into the local (default) or global file.

    Returns the path written.
    """
    section, name = _split_key(key)
    coerced = _coerce(key, value)
    path = _target_path(store_root, global_)
    data = _load_config(path)
    table = data.get(section)
    if not isinstance(table, dict):
        table = {}
        data[section] = table
    table[name] = coerced
    _write(path, data)
    shown = "***" if key == "auth.password" else coerced
    logger.info("✅ Config %s = %s (%s)", key, shown, path)
    return path


def unset_value(key: str, store_root: pathlib.Path | None = None, *, global_: bool = False) -> bool:
    """Remove *key* from the local (default) or global file.

    Returns ``True`` if the key was present.
    """
    section, name = _split_key(key)
    path = _target_path(store_root, global_)
    data = _load_config(path)
    table = data.get(section)
    if not isinstance(table, dict) or name not in table:
        return False
    del table[name]
    _write(path, data)
    logger.info("✅ Config %s unset (%s)", key, path)
    return True


def _get_str(key: str, store_root: pathlib.Path | None) -> str | None:
    value = get_value(key, store_root)
    return str(value) if value is not None else None


def load_config(store_root: pathlib.Path | None = None) -> WsvcConfig:
    """Return the effective configuration for the repository at *store_root*."""
    return WsvcConfig(
        author=_get_str("commit.author", store_root),
        auto_record=bool(get_value("commit.auto_record", store_root)),
        account=_get_str("auth.account", store_root),
        password=_get_str("auth.password", store_root),
        origin=_get_str("remote.origin", store_root),
    )
