# buildprep/variants.py
"""
Deployment variants of the native build.

Exactly one variant is built per invocation. Each one extends the shared base
CMake arguments with its service feature flag and picks its native targets:

  IN_PROCESS      -DXRT_FEATURE_SERVICE=OFF  openxr_monado
  OUT_OF_PROCESS  -DXRT_FEATURE_SERVICE=ON   openxr_monado, monado-service
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from buildprep.config import Config, get_config
from buildprep.logging import get_logger

logger = get_logger("variants")

PRIMARY_RUNTIME_TARGET = "openxr_monado"
SERVICE_TARGET = "monado-service"


class BuildVariant(enum.Enum):
    IN_PROCESS = "inProcess"
    OUT_OF_PROCESS = "outOfProcess"

    @property
    def token(self) -> str:
        return self.value


@dataclass(frozen=True)
class VariantProfile:
    feature_flag: str
    targets: Tuple[str, ...]
    application_id_suffix: str
    app_name: str
    in_process: bool


PROFILES: Mapping[BuildVariant, VariantProfile] = {
    BuildVariant.IN_PROCESS: VariantProfile(
        feature_flag="-DXRT_FEATURE_SERVICE=OFF",
        targets=(PRIMARY_RUNTIME_TARGET,),
        application_id_suffix=".in_process",
        app_name="Monado In Process (Debugging)",
        in_process=True,
    ),
    BuildVariant.OUT_OF_PROCESS: VariantProfile(
        feature_flag="-DXRT_FEATURE_SERVICE=ON",
        targets=(PRIMARY_RUNTIME_TARGET, SERVICE_TARGET),
        application_id_suffix=".out_of_process",
        app_name="Monado XR",
        in_process=False,
    ),
}


def _check_profiles():
    missing = [v for v in BuildVariant if v not in PROFILES]
    if missing:
        raise RuntimeError(f"no build profile for {missing}")
    target_sets = [frozenset(p.targets) for p in PROFILES.values()]
    if len(set(target_sets)) != len(target_sets):
        raise RuntimeError("build variants must not share a native target set")
    if not all(PRIMARY_RUNTIME_TARGET in t for t in target_sets):
        raise RuntimeError(f"every build variant must build {PRIMARY_RUNTIME_TARGET}")


_check_profiles()


@dataclass(frozen=True)
class BaseParameters:
    include_dir: Path
    platform: int = 26
    stl: str = "c++_static"
    neon: bool = True
    python_binary: Optional[str] = None

    @classmethod
    def from_config(cls, include_dir: Path, cfg: Optional[Config] = None) -> "BaseParameters":
        cfg = cfg or get_config()
        shared = bool(cfg.get("native.shared_stl", False))
        if shared:
            logger.info("Using SHARED C++ standard library")
        python_binary = cfg.get("native.python_binary")
        if python_binary:
            logger.info("Path to Python 3 explicitly specified: %s", python_binary)
        return cls(
            include_dir=Path(include_dir),
            platform=int(cfg.get("android.min_sdk", 26)),
            stl="c++_shared" if shared else "c++_static",
            python_binary=python_binary,
        )


@dataclass(frozen=True)
class NativeBuildParameters:
    variant: BuildVariant
    arguments: Tuple[str, ...]
    targets: Tuple[str, ...]
    application_id: str
    app_name: str
    build_config: Dict[str, bool] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "variant": self.variant.token,
            "arguments": list(self.arguments),
            "targets": list(self.targets),
            "application_id": self.application_id,
            "app_name": self.app_name,
            "build_config": dict(self.build_config),
        }


def base_arguments(base: BaseParameters) -> List[str]:
    args = [
        f"-DEIGEN3_INCLUDE_DIR={base.include_dir}",
        f"-DANDROID_PLATFORM={base.platform}",
        f"-DANDROID_STL={base.stl}",
    ]
    if base.neon:
        args.append("-DANDROID_ARM_NEON=TRUE")
    if base.python_binary:
        args.append(f"-DPYTHON_EXECUTABLE={base.python_binary}")
    return args


def parse_variant(token: str) -> BuildVariant:
    """Accept ``inProcess``/``outOfProcess`` or the enum names, ignoring case, ``-`` and ``_``."""
    key = str(token).replace("-", "").replace("_", "").lower()
    for variant in BuildVariant:
        if key in (variant.value.lower(), variant.name.replace("_", "").lower()):
            return variant
    accepted = ", ".join(v.token for v in BuildVariant)
    raise ValueError(f"unknown build variant {token!r} (expected one of: {accepted})")


def configure(variant: BuildVariant, base: BaseParameters, application_id: Optional[str] = None) -> NativeBuildParameters:
    if not isinstance(variant, BuildVariant):
        raise TypeError(f"variant must be a BuildVariant, got {type(variant).__name__}")
    profile = PROFILES[variant]
    app_id = application_id or get_config().get("android.application_id")
    params = NativeBuildParameters(
        variant=variant,
        arguments=tuple(base_arguments(base) + [profile.feature_flag]),
        targets=profile.targets,
        application_id=app_id + profile.application_id_suffix,
        app_name=profile.app_name,
        build_config={"inProcess": profile.in_process},
    )
    logger.debug("configured %s: targets=%s", variant.token, ",".join(params.targets))
    return params
