# buildprep/fetcher.py
"""
fetcher.py - provisioning of the third-party native source dependency

Features:
- Explicit PRESENT/ABSENT check on a marker file inside the expected directory
- HTTP(S) download bounded per socket wait and in total (requests, streamed to a staging archive)
- Optional sha256 verification of the downloaded archive
- Full tar extraction into a staging unpack directory, rejecting members that escape it
- Fetch and unpack are skipped together when the marker is present

Known limitations:
- A present marker is trusted even if it belongs to a different version than the
  one configured; the directory is not re-validated.
- Two provisioning runs against the same build directory at once are not supported.
"""

from __future__ import annotations

import os
import enum
import hashlib
import time
import tarfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests

from buildprep.config import Config, get_config
from buildprep.logging import get_logger

logger = get_logger("fetcher")


class ProvisioningError(RuntimeError):
    """The dependency could not be downloaded or unpacked."""


class ArtifactState(enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"


@dataclass(frozen=True)
class DependencyArtifact:
    name: str
    version: str
    expected_path: Optional[Path]
    remote_url: str
    local_archive_path: Path
    unpack_dir: Path
    marker: str = "Core"
    sha256: Optional[str] = None

    @property
    def unpacked_root(self) -> Path:
        return self.unpack_dir / f"{self.name}-{self.version}"


@dataclass(frozen=True)
class ProvisionResult:
    path: Path
    state: ArtifactState
    fetched: bool
    archive: Optional[Path] = None


# -----------------------------------------------------------------------
# Utility helpers
# -----------------------------------------------------------------------
def _sha256_of_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _is_within(base: Path, target: Path) -> bool:
    base = base.resolve()
    try:
        target.resolve().relative_to(base)
        return True
    except ValueError:
        return False


def check_artifact(artifact: DependencyArtifact) -> ArtifactState:
    if artifact.expected_path is None:
        return ArtifactState.ABSENT
    if (Path(artifact.expected_path) / artifact.marker).exists():
        return ArtifactState.PRESENT
    return ArtifactState.ABSENT


def artifact_from_config(cfg: Optional[Config] = None, build_dir: Optional[Path] = None) -> DependencyArtifact:
    """Describe the Eigen source dependency from the `eigen` config section."""
    cfg = cfg or get_config()
    build_dir = Path(build_dir) if build_dir else cfg.build_dir
    version = str(cfg.get("eigen.fetch_version"))
    template = cfg.get("eigen.url_template")
    include_dir = cfg.get("eigen.include_dir")
    return DependencyArtifact(
        name="eigen",
        version=version,
        expected_path=Path(include_dir) if include_dir else None,
        remote_url=template.format(version=version),
        local_archive_path=build_dir / "intermediates" / "eigenDownload" / f"eigen-{version}.tar.gz",
        unpack_dir=build_dir / "intermediates" / "eigen",
        marker=cfg.get("eigen.marker", "Eigen/Core"),
        sha256=cfg.get("eigen.sha256"),
    )


# -----------------------------------------------------------------------
# ArtifactProvisioner
# -----------------------------------------------------------------------
class ArtifactProvisioner:
    def __init__(self, session: Optional[Any] = None, timeout: Optional[int] = None, chunk_size: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        cfg = get_config()
        self.session = session if session is not None else requests.Session()
        self.timeout = int(timeout if timeout is not None else cfg.get("fetcher.http_timeout", 60))
        self.chunk_size = int(chunk_size or cfg.get("fetcher.chunk_size", 65536))
        self.clock = clock
        self._lock = threading.RLock()
        self._metrics = {"fetch.total": 0, "fetch.skipped": 0, "fetch.success": 0, "fetch.failed": 0}

    def _count(self, key: str):
        with self._lock:
            self._metrics[key] += 1

    # -------------------------
    # download / unpack
    # -------------------------
    def download(self, url: str, dest: Path) -> Path:
        """Stream url into dest; self.timeout bounds each socket wait and the whole transfer."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        logger.info("Downloading %s -> %s", url, dest)
        deadline = self.clock() + self.timeout
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                with open(part, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=self.chunk_size):
                        if self.clock() > deadline:
                            raise ProvisioningError(f"download of {url} exceeded {self.timeout}s")
                        if chunk:
                            f.write(chunk)
            os.replace(part, dest)
        except ProvisioningError:
            part.unlink(missing_ok=True)
            raise
        except requests.Timeout as e:
            part.unlink(missing_ok=True)
            raise ProvisioningError(f"download of {url} timed out after {self.timeout}s") from e
        except (requests.RequestException, OSError) as e:
            part.unlink(missing_ok=True)
            raise ProvisioningError(f"download of {url} failed: {e}") from e
        return dest

    def verify(self, archive: Path, expected_sha256: Optional[str]):
        if not expected_sha256:
            return
        got = _sha256_of_file(archive)
        if got.lower() != expected_sha256.strip().lower():
            archive.unlink(missing_ok=True)
            raise ProvisioningError(f"checksum mismatch for {archive.name}: expected {expected_sha256} got {got}")

    def unpack(self, archive: Path, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Unpacking %s -> %s", archive, dest_dir)
        try:
            with tarfile.open(archive, "r:*") as tar:
                members = tar.getmembers()
                for m in members:
                    if not _is_within(dest_dir, dest_dir / m.name):
                        raise ProvisioningError(f"archive member {m.name!r} escapes {dest_dir}")
                    if m.issym() or m.islnk():
                        # hard link names are relative to the archive root, symlinks to their directory
                        target = dest_dir / m.linkname if m.islnk() else (dest_dir / m.name).parent / m.linkname
                        if not _is_within(dest_dir, target):
                            raise ProvisioningError(f"archive link {m.name!r} points outside {dest_dir}")
                extract_kwargs = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}
                tar.extractall(dest_dir, members=members, **extract_kwargs)
        except (tarfile.TarError, OSError) as e:
            raise ProvisioningError(f"cannot unpack {archive}: {e}") from e
        return dest_dir

    # -------------------------
    # core flow
    # -------------------------
    def ensure_artifact(self, artifact: DependencyArtifact) -> ProvisionResult:
        """
        PRESENT: return the expected path, no network and no extraction.
        ABSENT: download, verify, unpack, return the unpacked root.
        """
        self._count("fetch.total")
        state = check_artifact(artifact)
        if state is ArtifactState.PRESENT:
            logger.info("Using %s as specified/detected in %s", artifact.name, artifact.expected_path)
            self._count("fetch.skipped")
            return ProvisionResult(path=Path(artifact.expected_path), state=state, fetched=False)

        logger.info("%s include dir not set or not valid, so downloading %s %s at build time",
                    artifact.name, artifact.name, artifact.version)
        try:
            archive = self.download(artifact.remote_url, artifact.local_archive_path)
            self.verify(archive, artifact.sha256)
            self.unpack(archive, artifact.unpack_dir)
        except ProvisioningError:
            self._count("fetch.failed")
            logger.error("Provisioning of %s %s failed", artifact.name, artifact.version)
            raise
        root = artifact.unpacked_root
        if not root.is_dir():
            self._count("fetch.failed")
            raise ProvisioningError(f"archive {archive.name} did not contain {root.name}/")
        self._count("fetch.success")
        logger.info("Fetched %s %s -> %s", artifact.name, artifact.version, root)
        return ProvisionResult(path=root, state=state, fetched=True, archive=archive)

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)


# -----------------------------------------------------------------------
# module-level manager & wrappers
# -----------------------------------------------------------------------
_MANAGER_LOCK = threading.RLock()
_MANAGER: Optional[ArtifactProvisioner] = None


def get_provisioner() -> ArtifactProvisioner:
    global _MANAGER
    with _MANAGER_LOCK:
        if _MANAGER is None:
            _MANAGER = ArtifactProvisioner()
        return _MANAGER


def ensure_artifact(artifact: DependencyArtifact) -> ProvisionResult:
    return get_provisioner().ensure_artifact(artifact)
