#!/usr/bin/env python3
# buildprep/cli.py
"""
buildprep CLI

Subcommands:
  version                 version code and version string from git describe
  licenses [--out DIR]    aggregate license texts into raw resources
  fetch                   make sure the Eigen include dir exists (download if needed)
  configure --variant V   print native build parameters for one variant
  prepare --variant V     run the whole pre-build step
  config [--validate]     print the merged configuration

Global options mirror gradle properties: ``-P native.shared_stl=true``.
"""

from __future__ import annotations

import sys
import json
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from buildprep import config as config_mod
from buildprep.buildsystem import BuildStepError, prepare_build
from buildprep.fetcher import ProvisioningError, artifact_from_config, ensure_artifact
from buildprep.licenses import AggregationError, aggregate_from_config
from buildprep.logging import configure_logging, get_logger
from buildprep.variants import BaseParameters, BuildVariant, configure, parse_variant
from buildprep.version import MalformedVersionError, get_version_oracle

logger = get_logger("cli")
console = Console()
err_console = Console(stderr=True)


# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")


def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}")


def print_err(msg: str):
    err_console.print(f"[bold red]✖[/] {msg}")


def _kv_table(title: str, rows: Dict[str, Any]) -> Table:
    table = Table(title=title, show_header=False)
    table.add_column("key", style="cyan")
    table.add_column("value")
    for k, v in rows.items():
        table.add_row(k, "-" if v is None else str(v))
    return table


# -----------------------
# Commands
# -----------------------
def cmd_version(cfg: config_mod.Config, args) -> int:
    oracle = get_version_oracle()
    code = oracle.version_code()
    name = oracle.version_string()
    if args.json:
        console.print_json(json.dumps({"version_code": code, "version_string": name}))
    else:
        console.print(_kv_table("version", {"version code": code, "version string": name}))
    if code is None:
        print_warn("no v* tag reachable; version code unavailable")
    return 0


def cmd_licenses(cfg: config_mod.Config, args) -> int:
    report = aggregate_from_config(cfg, output_dir=Path(args.out) if args.out else None)
    for path in report.written:
        print_ok(str(path))
    report.raise_for_failures()
    return 0


def cmd_fetch(cfg: config_mod.Config, args) -> int:
    result = ensure_artifact(artifact_from_config(cfg))
    verb = "downloaded" if result.fetched else "present"
    print_ok(f"eigen {verb}: {result.path}")
    return 0


def cmd_configure(cfg: config_mod.Config, args) -> int:
    include_dir = args.include_dir or cfg.get("eigen.include_dir")
    if not include_dir:
        include_dir = artifact_from_config(cfg).unpacked_root
    params = configure(args.variant, BaseParameters.from_config(Path(include_dir), cfg),
                       application_id=cfg.get("android.application_id"))
    if args.json:
        console.print_json(json.dumps(params.as_dict()))
        return 0
    console.print(_kv_table(f"native parameters ({params.variant.token})", {
        "application id": params.application_id,
        "app name": params.app_name,
        "targets": " ".join(params.targets),
        "inProcess": params.build_config["inProcess"],
    }))
    for arg in params.arguments:
        console.print(f"  {arg}")
    return 0


def cmd_prepare(cfg: config_mod.Config, args) -> int:
    ctx = prepare_build(args.variant, cfg)
    if args.json:
        console.print_json(json.dumps(ctx.as_dict()))
        return 0
    console.print(_kv_table(f"build context ({ctx.variant.token})", {
        "version code": ctx.version_code,
        "version string": ctx.version_string,
        "openxr headers": ctx.header_version,
        "eigen include dir": ctx.provision.path,
        "eigen fetched": ctx.provision.fetched,
        "licenses": ", ".join(e.normalized_file_name for e in ctx.licenses),
        "targets": " ".join(ctx.parameters.targets),
        "application id": ctx.parameters.application_id,
    }))
    print_ok("ready for native build")
    return 0


def cmd_config(cfg: config_mod.Config, args) -> int:
    if args.validate:
        ok, issues = config_mod.validate_structure(cfg.merged)
        for issue in issues:
            print_warn(issue)
        if ok:
            print_ok(f"configuration valid (from={cfg.source or '<defaults>'})")
        return 0 if ok else 1
    console.print_json(json.dumps(cfg.merged, default=str))
    return 0


# -----------------------
# Argparse wiring
# -----------------------
def _variant_arg(token: str) -> BuildVariant:
    try:
        return parse_variant(token)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="buildprep", description="Pre-build provisioning for the XR runtime Android app")
    ap.add_argument("--config", help="explicit config file (yaml/json)")
    ap.add_argument("-P", dest="overrides", action="append", default=[], metavar="KEY=VALUE",
                    help="override a config value, e.g. -P native.shared_stl=true")
    ap.add_argument("--repo-root", help="repository root (default: nearest .git)")
    ap.add_argument("--build-dir", help="build output directory (default: <repo>/build)")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = ap.add_subparsers(dest="cmd")

    p_version = sub.add_parser("version", help="print version code and string")
    p_version.add_argument("--json", action="store_true")
    p_version.set_defaults(func=cmd_version)

    p_lic = sub.add_parser("licenses", help="aggregate license files")
    p_lic.add_argument("--out", help="output directory")
    p_lic.set_defaults(func=cmd_licenses)

    p_fetch = sub.add_parser("fetch", help="provision the Eigen dependency")
    p_fetch.set_defaults(func=cmd_fetch)

    p_conf = sub.add_parser("configure", help="print native build parameters")
    p_conf.add_argument("--variant", type=_variant_arg, required=True)
    p_conf.add_argument("--include-dir", help="Eigen include dir to use")
    p_conf.add_argument("--json", action="store_true")
    p_conf.set_defaults(func=cmd_configure)

    p_prep = sub.add_parser("prepare", help="run all pre-build steps")
    p_prep.add_argument("--variant", type=_variant_arg, required=True)
    p_prep.add_argument("--json", action="store_true")
    p_prep.set_defaults(func=cmd_prepare)

    p_cfg = sub.add_parser("config", help="show merged configuration")
    p_cfg.add_argument("--validate", action="store_true")
    p_cfg.set_defaults(func=cmd_config)
    return ap


def _load_config(args) -> config_mod.Config:
    overrides: Dict[str, Any] = config_mod.parse_overrides(args.overrides)
    if args.repo_root:
        overrides["paths.repo_root"] = args.repo_root
    if args.build_dir:
        overrides["paths.build_dir"] = args.build_dir
    return config_mod.load(args.config, overrides=overrides)


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    try:
        cfg = _load_config(args)
    except (OSError, ValueError) as e:
        print_err(f"config: {e}")
        return 2
    configure_logging(cfg.section("logging"), verbose=args.verbose)
    try:
        return args.func(cfg, args)
    except BuildStepError as e:
        print_err(f"{e.step} failed: {e.cause}")
        return 2
    except (ProvisioningError, AggregationError, MalformedVersionError) as e:
        print_err(f"{args.cmd} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
