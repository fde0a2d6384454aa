# buildprep/config.py
# -*- coding: utf-8 -*-
"""
buildprep central configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit, env override, cwd, user)
- Merge with authoritative DEFAULTS, normalize/coerce types (paths, ints, bools)
- Validate structure and types, warn or error (fatal optional)
- Dotted getter on the Config dataclass, plus dotted-key overrides (CLI -P key=value)
- Thread-safe load/reload
"""

from __future__ import annotations

import os
import json
import logging
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List, Tuple, Mapping

import yaml

logger = logging.getLogger("buildprep.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "color": True,
        "max_size": "10M",
        "backups": 5,
        "module_levels": {},
        "jsonl": {"enabled": False, "path": "~/.buildprep/transparency.jsonl"},
    },
    "paths": {
        "repo_root": None,   # None -> discovered by walking up to .git
        "build_dir": None,   # None -> <repo_root>/build
    },
    "version": {
        "match": "v*",
        "git_timeout": 30,
    },
    "eigen": {
        "include_dir": None,
        "fetch_version": "3.4.0",
        "url_template": "https://gitlab.com/libeigen/eigen/-/archive/{version}/eigen-{version}.tar.gz",
        "marker": "Eigen/Core",
        "sha256": None,
    },
    "fetcher": {
        "http_timeout": 60,
        "chunk_size": 65536,
    },
    "licenses": {
        "source_dir": None,  # None -> <repo_root>/LICENSES
        "include": ["BSL-1.0.txt"],
        "output_dir": None,  # None -> <build_dir>/generated/licenses/main/res/raw
        "additional": ["mit", "mpl_2_0", "bsl_1_0"],
    },
    "android": {
        "application_id": "org.freedesktop.monado.openxr_runtime",
        "min_sdk": 26,
    },
    "native": {
        "shared_stl": False,
        "python_binary": None,
        "header": "src/external/openxr_includes/openxr/openxr.h",
    },
    "coordinator": {
        "workers": 3,
    },
}

_PATH_KEYS: List[Tuple[str, ...]] = [
    ("logging", "file"),
    ("logging", "jsonl", "path"),
    ("paths", "repo_root"),
    ("paths", "build_dir"),
    ("eigen", "include_dir"),
    ("licenses", "source_dir"),
    ("licenses", "output_dir"),
    ("native", "python_binary"),
]

_INT_KEYS: List[Tuple[str, str]] = [
    ("version", "git_timeout"),
    ("fetcher", "http_timeout"),
    ("fetcher", "chunk_size"),
    ("android", "min_sdk"),
    ("coordinator", "workers"),
    ("logging", "backups"),
]


# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    source: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return default if cur is None else cur

    def section(self, name: str) -> Dict[str, Any]:
        val = self.merged.get(name)
        return deepcopy(val) if isinstance(val, dict) else {}

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

    def with_overrides(self, overrides: Mapping[str, Any]) -> "Config":
        """Return a new Config with dotted-key overrides applied (``native.shared_stl=true``)."""
        if not overrides:
            return self
        nested: Dict[str, Any] = {}
        for key, value in overrides.items():
            ref = nested
            parts = key.split(".")
            for p in parts[:-1]:
                ref = ref.setdefault(p, {})
            ref[parts[-1]] = _coerce_scalar(value)
        merged = _normalize_and_coerce(_deep_merge(self.merged, nested))
        return Config(raw=_deep_merge(self.raw, nested), merged=merged, source=self.source)

    @property
    def repo_root(self) -> Path:
        explicit = self.get("paths.repo_root")
        if explicit:
            return Path(explicit)
        return find_repo_root()

    @property
    def build_dir(self) -> Path:
        explicit = self.get("paths.build_dir")
        if explicit:
            return Path(explicit)
        return self.repo_root / "build"


# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()


# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))


def _coerce_scalar(val: Any) -> Any:
    if not isinstance(val, str):
        return val
    s = val.strip()
    low = s.lower()
    if low in ("true", "yes", "on"):
        return True
    if low in ("false", "no", "off"):
        return False
    if low in ("null", "none", ""):
        return None
    try:
        return int(s)
    except ValueError:
        return s


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res


def find_repo_root(start: Optional[Path] = None) -> Path:
    """Walk up from ``start`` (default cwd) to the first directory holding ``.git``."""
    cur = Path(start or Path.cwd()).resolve()
    for candidate in [cur, *cur.parents]:
        if (candidate / ".git").exists():
            return candidate
    return cur


def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("BUILDPREP_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "buildprep.yaml",
        Path.cwd() / "buildprep.yml",
        Path.cwd() / "buildprep.json",
        Path.home() / ".config" / "buildprep" / "config.yaml",
    ])
    return candidates


def _load_file(path: Path) -> Dict[str, Any]:
    txt = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(txt)
    else:
        data = yaml.safe_load(txt)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config: top level of {path} must be a mapping")
    return data


def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    for keys in _PATH_KEYS:
        ref: Any = out
        for k in keys[:-1]:
            ref = ref.get(k, {}) if isinstance(ref, dict) else {}
        last = keys[-1]
        if isinstance(ref, dict) and isinstance(ref.get(last), str) and ref[last]:
            ref[last] = _expand_path(ref[last])

    for section, key in _INT_KEYS:
        sec = out.get(section)
        if isinstance(sec, dict) and key in sec and sec[key] is not None:
            try:
                sec[key] = int(sec[key])
            except (TypeError, ValueError):
                logger.debug("config: cannot coerce %s.%s=%r to int", section, key, sec[key])

    native = out.get("native")
    if isinstance(native, dict):
        native["shared_stl"] = bool(_coerce_scalar(native.get("shared_stl")))

    lic = out.get("licenses")
    if isinstance(lic, dict) and isinstance(lic.get("include"), str):
        lic["include"] = [lic["include"]]
    return out


def validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    for k, v in cfg.items():
        if k in DEFAULTS and not isinstance(v, dict):
            issues.append(f"{k} must be a mapping")
    for section, key in _INT_KEYS:
        val = (cfg.get(section) or {}).get(key) if isinstance(cfg.get(section), dict) else None
        if val is not None and (not isinstance(val, int) or val < 0):
            issues.append(f"{section}.{key} must be a non-negative integer")
    workers = cfg.get("coordinator", {}).get("workers") if isinstance(cfg.get("coordinator"), dict) else None
    if isinstance(workers, int) and workers < 1:
        issues.append("coordinator.workers must be integer >= 1")
    include = cfg.get("licenses", {}).get("include") if isinstance(cfg.get("licenses"), dict) else None
    if include is not None and not isinstance(include, list):
        issues.append("licenses.include should be a list of glob patterns")
    return (len(issues) == 0, issues)


# ----------------------------
# Loading / reloading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    if explicit:
        raise FileNotFoundError(f"config file not found: {explicit}")
    return None


def load(explicit_path: Optional[str] = None, fatal: bool = False, overrides: Optional[Mapping[str, Any]] = None) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object and makes it the module-level config.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = {}
        if cfg_path:
            raw = _load_file(cfg_path)
        merged = _normalize_and_coerce(_deep_merge(DEFAULTS, raw))
        ok, issues = validate_structure(merged)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                logger.error(msg)
                raise ValueError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=merged, source=cfg_path).with_overrides(overrides or {})
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj


def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG


def reset() -> None:
    global _CONFIG
    with _CONFIG_LOCK:
        _CONFIG = None


def parse_overrides(items: Optional[List[str]]) -> Dict[str, Any]:
    """Parse ``key=value`` strings (gradle-style ``-P`` properties)."""
    out: Dict[str, Any] = {}
    for item in items or []:
        if "=" not in item:
            raise ValueError(f"override must look like key=value: {item!r}")
        k, v = item.split("=", 1)
        out[k.strip()] = v.strip()
    return out
