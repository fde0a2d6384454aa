# buildprep/version.py
# -*- coding: utf-8 -*-
"""
version.py - version identity derived from git history

API:
  oracle = get_version_oracle()
  code = oracle.version_code()      # int or None, from `git describe --always --long`
  name = oracle.version_string()    # str or None, from `git describe --always --dirty`

The numeric code packs major(2) minor(1) patch(1) commits(5) decimal digits,
so v1.2.3-45-gabcdef becomes "012300045" -> 12300045. The two values come from two
separate describe queries and are never merged into one: the code must stay
stable on a dirty tree, the string must show it.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from buildprep.config import get_config
from buildprep.logging import get_logger

logger = get_logger("version")

# (rc, stdout, stderr); rc is None when the process could not be started
RunResult = Tuple[Optional[int], str, str]
Runner = Callable[[List[str], Path, Optional[int]], RunResult]

# Supplied with major, minor, patch, commit count
VERSION_CODE_FORMAT = "%02d%01d%01d%05d"
FIELD_WIDTHS = (("major", 2), ("minor", 1), ("patch", 1), ("commits_since_patch", 5))

DESCRIBE_PATTERN = re.compile(
    r"v(?P<tag>(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+))"
    r"-(?P<commits>\d+)-g(?P<hash>[0-9a-f]+)(?P<dirty>-dirty)?"
)

HEADER_VERSION_PATTERN = re.compile(r"XR_MAKE_VERSION\(([^)]+)\)")


class MalformedVersionError(ValueError):
    """A describe capture could not be turned into a version field."""


class VersionFieldOverflow(MalformedVersionError):
    """A version field does not fit its fixed decimal width."""


@dataclass(frozen=True)
class VersionIdentity:
    major: int
    minor: int
    patch: int
    commits_since_patch: int
    commit_hash: str
    dirty: bool = False

    @property
    def tag(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch}"

    def describe(self) -> str:
        out = f"{self.tag}-{self.commits_since_patch}-g{self.commit_hash}"
        return out + "-dirty" if self.dirty else out


# ---------------------
# parsing / encoding
# ---------------------
def _to_int(name: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedVersionError(f"non-numeric {name} capture {value!r}") from e


def parse_describe(text: Optional[str]) -> Optional[VersionIdentity]:
    """Parse long-form describe output; None when it does not match the tag pattern."""
    if not text:
        return None
    m = DESCRIBE_PATTERN.fullmatch(text.strip())
    if not m:
        return None
    return VersionIdentity(
        major=_to_int("major", m.group("major")),
        minor=_to_int("minor", m.group("minor")),
        patch=_to_int("patch", m.group("patch")),
        commits_since_patch=_to_int("commits", m.group("commits")),
        commit_hash=m.group("hash"),
        dirty=bool(m.group("dirty")),
    )


def format_version_code(identity: VersionIdentity) -> str:
    """Fixed-width digit string for an identity. Raises VersionFieldOverflow instead of truncating."""
    values = []
    for name, width in FIELD_WIDTHS:
        value = getattr(identity, name)
        if value < 0 or value >= 10 ** width:
            raise VersionFieldOverflow(f"{name}={value} does not fit in {width} digit(s)")
        values.append(value)
    return VERSION_CODE_FORMAT % tuple(values)


def encode_version_code(identity: VersionIdentity) -> int:
    return int(format_version_code(identity))


def parse_header_version(path: Path, macro: str = "XR_CURRENT_API_VERSION") -> Optional[str]:
    """
    Read the API version out of a C header, e.g.
    ``#define XR_CURRENT_API_VERSION XR_MAKE_VERSION(1, 0, 34)`` -> ``"1.0.34"``.
    """
    path = Path(path)
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        logger.warning("Cannot read header %s: %s", path, e)
        return None
    line = next((ln for ln in lines if macro in ln), None)
    if line is None:
        logger.warning("No %s definition in %s", macro, path)
        return None
    m = HEADER_VERSION_PATTERN.search(line)
    if not m:
        logger.warning("%s in %s is not an XR_MAKE_VERSION(...) expression", macro, path)
        return None
    components = [c.replace(" ", "").strip() for c in m.group(1).split(",")]
    return ".".join(components)


# ---------------------
# git invocation
# ---------------------
def _run(cmd: List[str], cwd: Path, timeout: Optional[int] = None) -> RunResult:
    """Run cmd returning (rc, stdout, stderr); rc None when the tool could not run."""
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        p = subprocess.run(cmd, cwd=str(cwd), stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                           encoding="utf-8", errors="replace", timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %ss", " ".join(cmd), timeout)
        return None, "", "timeout"
    except OSError as e:
        logger.warning("Cannot run %s: %s", cmd[0], e)
        return None, "", str(e)
    return p.returncode, p.stdout or "", p.stderr or ""


class VersionOracle:
    def __init__(self, repo_root: Optional[Path] = None, runner: Optional[Runner] = None,
                 match: Optional[str] = None, timeout: Optional[int] = None):
        cfg = get_config()
        self.repo_root = Path(repo_root) if repo_root else cfg.repo_root
        self.runner = runner or _run
        self.match = match or cfg.get("version.match", "v*")
        self.timeout = timeout if timeout is not None else cfg.get("version.git_timeout", 30)

    def _describe(self, *flags: str) -> Optional[str]:
        cmd = ["git", "describe", "--always", *flags, "--match", self.match]
        rc, out, err = self.runner(cmd, self.repo_root, self.timeout)
        if rc != 0:
            if rc is not None:
                logger.debug("git describe exited %s: %s", rc, err.strip())
            return None
        out = out.strip()
        return out or None

    def describe_long(self) -> Optional[str]:
        return self._describe("--long")

    def identity(self) -> Optional[VersionIdentity]:
        return parse_describe(self.describe_long())

    def version_code(self) -> Optional[int]:
        """Version code from the long, non-dirty describe; None when no v* tag is reachable."""
        out = self.describe_long()
        identity = parse_describe(out)
        if identity is None:
            logger.warning("Could not find an annotated git tag matching the regex! (describe=%r)", out)
            return None
        code = encode_version_code(identity)
        logger.info("version code %s (%s)", code, identity.describe())
        return code

    def version_string(self) -> Optional[str]:
        """Raw dirty-aware describe output, or None if git could not answer."""
        out = self._describe("--dirty")
        if out is None:
            logger.warning("git describe --dirty produced no version string")
        return out


# --- module-level helpers ---
_ORACLE: Optional[VersionOracle] = None


def get_version_oracle() -> VersionOracle:
    global _ORACLE
    if _ORACLE is None:
        _ORACLE = VersionOracle()
    return _ORACLE


def derive_version_code(repo_root: Optional[Path] = None, runner: Optional[Runner] = None) -> Optional[int]:
    if repo_root is None and runner is None:
        return get_version_oracle().version_code()
    return VersionOracle(repo_root=repo_root, runner=runner).version_code()


def derive_version_string(repo_root: Optional[Path] = None, runner: Optional[Runner] = None) -> Optional[str]:
    if repo_root is None and runner is None:
        return get_version_oracle().version_string()
    return VersionOracle(repo_root=repo_root, runner=runner).version_string()
