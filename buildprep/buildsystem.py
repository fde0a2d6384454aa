# buildprep/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - pre-build provisioning step

API:
  ctx = BuildCoordinator(cfg, BuildVariant.OUT_OF_PROCESS).prepare()

Steps:
  version   -> version code + version string (+ header API version); never fatal when absent
  licenses  -> license texts into generated raw resources; fatal on any failed file
  provision -> Eigen include dir (detected or downloaded); fatal on failure
  configure -> native build parameters, only after licenses and provision succeeded

The first three have no data dependency on each other and run in a thread pool.
Nothing is returned to the native backend unless every fatal step succeeded.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from buildprep.config import Config, get_config
from buildprep.fetcher import ArtifactProvisioner, ProvisionResult, ProvisioningError, artifact_from_config
from buildprep.licenses import AggregationError, AggregationReport, LicenseEntry, aggregate_from_config
from buildprep.logging import get_logger
from buildprep.variants import BaseParameters, BuildVariant, NativeBuildParameters, configure
from buildprep.version import MalformedVersionError, VersionOracle, parse_header_version

logger = get_logger("buildsystem")


class BuildStepError(RuntimeError):
    """A fatal provisioning step failed; native compilation must not start."""

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"{step} step failed: {cause}")


@dataclass(frozen=True)
class VersionInfo:
    code: Optional[int]
    name: Optional[str]
    header_version: Optional[str] = None


@dataclass
class BuildContext:
    variant: BuildVariant
    version_code: Optional[int]
    version_string: Optional[str]
    header_version: Optional[str]
    licenses: List[LicenseEntry]
    license_dir: Path
    provision: ProvisionResult
    parameters: NativeBuildParameters
    res_values: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant.token,
            "version_code": self.version_code,
            "version_string": self.version_string,
            "header_version": self.header_version,
            "license_dir": str(self.license_dir),
            "licenses": [e.normalized_file_name for e in self.licenses],
            "include_dir": str(self.provision.path),
            "fetched": self.provision.fetched,
            "native": self.parameters.as_dict(),
            "res_values": dict(self.res_values),
        }


class BuildCoordinator:
    def __init__(self, cfg: Optional[Config] = None, variant: BuildVariant = BuildVariant.OUT_OF_PROCESS,
                 oracle: Optional[VersionOracle] = None, provisioner: Optional[ArtifactProvisioner] = None):
        self.cfg = cfg or get_config()
        self.variant = variant
        self.oracle = oracle or VersionOracle(repo_root=self.cfg.repo_root, match=self.cfg.get("version.match"),
                                              timeout=self.cfg.get("version.git_timeout"))
        self.provisioner = provisioner or ArtifactProvisioner(timeout=self.cfg.get("fetcher.http_timeout"),
                                                              chunk_size=self.cfg.get("fetcher.chunk_size"))
        self.workers = max(1, int(self.cfg.get("coordinator.workers", 3)))

    # --- individual steps ---
    def derive_version(self) -> VersionInfo:
        code = self.oracle.version_code()
        name = self.oracle.version_string()
        header = None
        header_rel = self.cfg.get("native.header")
        if header_rel:
            header_path = self.cfg.repo_root / header_rel
            if header_path.exists():
                header = parse_header_version(header_path)
            else:
                logger.debug("header %s not present; skipping API version", header_path)
        if code is None or name is None:
            logger.info("Incomplete version (code=%s, name=%s); packaging uses its defaults", code, name)
        return VersionInfo(code=code, name=name, header_version=header)

    def aggregate_licenses(self) -> AggregationReport:
        report = aggregate_from_config(self.cfg)
        report.raise_for_failures()
        return report

    def provision(self) -> ProvisionResult:
        return self.provisioner.ensure_artifact(artifact_from_config(self.cfg))

    def configure_native(self, include_dir: Path) -> NativeBuildParameters:
        base = BaseParameters.from_config(include_dir, self.cfg)
        return configure(self.variant, base, application_id=self.cfg.get("android.application_id"))

    # --- orchestration ---
    def prepare(self) -> BuildContext:
        started = time.monotonic()
        logger.info("Preparing %s build (repo=%s, build_dir=%s)", self.variant.token, self.cfg.repo_root, self.cfg.build_dir)
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="buildprep") as ex:
            futures = {
                "version": ex.submit(self.derive_version),
                "licenses": ex.submit(self.aggregate_licenses),
                "provision": ex.submit(self.provision),
            }
            results: Dict[str, Any] = {}
            errors: Dict[str, BaseException] = {}
            for step, fut in futures.items():
                try:
                    results[step] = fut.result()
                except (MalformedVersionError, AggregationError, ProvisioningError) as e:
                    logger.error("%s step failed: %s", step, e)
                    errors[step] = e
        for step in ("version", "licenses", "provision"):
            if step in errors:
                raise BuildStepError(step, errors[step]) from errors[step]

        version: VersionInfo = results["version"]
        report: AggregationReport = results["licenses"]
        provision: ProvisionResult = results["provision"]
        try:
            parameters = self.configure_native(provision.path)
        except (TypeError, ValueError) as e:
            raise BuildStepError("configure", e) from e

        res_values = {
            "monado_lib_version": version.name,
            "library_openxrheaders_libraryVersion": version.header_version,
            "app_name": parameters.app_name,
            "additional_licenses": list(self.cfg.get("licenses.additional", [])),
        }
        ctx = BuildContext(
            variant=self.variant,
            version_code=version.code,
            version_string=version.name,
            header_version=version.header_version,
            licenses=report.entries,
            license_dir=report.output_dir,
            provision=provision,
            parameters=parameters,
            res_values=res_values,
        )
        logger.info("Prepared %s build in %.2fs (version=%s code=%s)", self.variant.token,
                    time.monotonic() - started, version.name, version.code)
        return ctx


# --- module-level helpers ---
def get_coordinator(variant: BuildVariant, cfg: Optional[Config] = None) -> BuildCoordinator:
    return BuildCoordinator(cfg=cfg, variant=variant)


def prepare_build(variant: BuildVariant, cfg: Optional[Config] = None) -> BuildContext:
    return get_coordinator(variant, cfg).prepare()
