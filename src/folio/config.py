from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

WPM_MIN = 100
WPM_MAX = 1000
DEFAULT_WPM = 250
DEFAULT_PUNCT_PAUSE_MS = 100
MIN_WIDTH = 20
MAX_WIDTH = 120
DEFAULT_WIDTH = 72
DEFAULT_HEIGHT = 24
MAX_WORKERS = 8


class ConfigError(ValueError):
    """Raised when a configuration file cannot be read."""


@dataclass(frozen=True)
class ReaderConfig:
    wpm: int = DEFAULT_WPM
    pause_on_punct: bool = True
    punct_pause_ms: int = DEFAULT_PUNCT_PAUSE_MS
    hyphenate: bool = False
    hyphen_language: str = "en_US"
    min_width: int = MIN_WIDTH
    max_width: int = MAX_WIDTH
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    two_pane: bool = False
    prefetch_window: int = 1
    workers: int = 2

    def clamped(self) -> "ReaderConfig":
        min_width = max(MIN_WIDTH, self.min_width)
        max_width = max(min_width, self.max_width)
        return replace(
            self,
            wpm=clamp_wpm(self.wpm),
            punct_pause_ms=max(0, self.punct_pause_ms),
            min_width=min_width,
            max_width=max_width,
            width=max(min_width, min(self.width, max_width)),
            height=max(1, self.height),
            prefetch_window=max(0, self.prefetch_window),
            workers=max(1, min(self.workers, MAX_WORKERS)),
            hyphen_language=self.hyphen_language.strip() or "en_US",
        )

    def clamp_width(self, width: int) -> int:
        return max(self.min_width, min(width, self.max_width))


def clamp_wpm(value: int) -> int:
    return max(WPM_MIN, min(int(value), WPM_MAX))


_ENV_KEYS = {
    "FOLIO_WPM": "wpm",
    "FOLIO_PAUSE_ON_PUNCT": "pause_on_punct",
    "FOLIO_PUNCT_PAUSE_MS": "punct_pause_ms",
    "FOLIO_HYPHENATE": "hyphenate",
    "FOLIO_HYPHEN_LANG": "hyphen_language",
    "FOLIO_WIDTH": "width",
    "FOLIO_HEIGHT": "height",
    "FOLIO_WORKERS": "workers",
}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(name: str, raw: Any, current: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"{name} expects a boolean, got {raw!r}")
    if isinstance(current, int):
        if isinstance(raw, bool):
            raise ValueError(f"{name} expects an integer, got {raw!r}")
        return int(raw)
    if isinstance(current, str):
        return str(raw)
    return raw


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Unable to read config {path}: {exc}") from exc
    section = data.get("folio", data)
    if not isinstance(section, dict):
        raise ConfigError(f"[folio] in {path} must be a table")
    return section


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ReaderConfig:
    """
    Build a ReaderConfig from defaults, an optional TOML file and FOLIO_* env vars.

    File values with the wrong type raise ConfigError; environment values that
    do not parse are ignored so a stray export never blocks startup.
    """
    env = os.environ if env is None else env
    config = ReaderConfig()
    known = {f.name for f in fields(ReaderConfig)}
    if path is not None:
        updates: dict[str, Any] = {}
        for key, raw in _read_toml(Path(path).expanduser()).items():
            name = key.replace("-", "_")
            if name not in known:
                continue
            try:
                updates[name] = _coerce(name, raw, getattr(config, name))
            except (TypeError, ValueError) as exc:
                raise ConfigError(str(exc)) from exc
        config = replace(config, **updates)
    for env_key, name in _ENV_KEYS.items():
        raw = env.get(env_key)
        if raw is None or not raw.strip():
            continue
        try:
            config = replace(config, **{name: _coerce(name, raw, getattr(config, name))})
        except ValueError:
            continue
    return config.clamped()


__all__ = [
    "ConfigError",
    "DEFAULT_WPM",
    "ReaderConfig",
    "WPM_MAX",
    "WPM_MIN",
    "clamp_wpm",
    "load_config",
]
