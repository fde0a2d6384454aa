# buildprep/licenses.py
"""
licenses.py - copy third-party license texts into raw app resources.

Each selected file gets a resource-safe name (``BSL-1.0.txt`` -> ``bsl_1_0.txt``)
and its lines are made safe for display in a markup view: blank lines become
``<br /><br />`` and every other line is XML-escaped.
"""

from __future__ import annotations

import re
import fnmatch
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union
from xml.sax.saxutils import escape

from buildprep.config import Config, get_config
from buildprep.logging import get_logger

logger = get_logger("licenses")

PARAGRAPH_BREAK = "<br /><br />"
_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class AggregationError(RuntimeError):
    """One or more license files could not be aggregated."""

    def __init__(self, failures: Sequence["AggregationFailure"]):
        self.failures = list(failures)
        names = ", ".join(f"{f.source}: {f.error}" for f in self.failures)
        super().__init__(f"license aggregation failed for {names}")


@dataclass(frozen=True)
class LicenseEntry:
    source_file_name: str
    normalized_file_name: str
    transformed_lines: List[str]


@dataclass(frozen=True)
class AggregationFailure:
    source: str
    error: str


@dataclass
class AggregationReport:
    output_dir: Path
    entries: List[LicenseEntry] = field(default_factory=list)
    failures: List[AggregationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def written(self) -> List[Path]:
        return [self.output_dir / e.normalized_file_name for e in self.entries]

    def raise_for_failures(self):
        if self.failures:
            raise AggregationError(self.failures)


def normalize_license_name(name: str) -> str:
    lower_no_extension = name.lower().replace(".txt", "")
    return lower_no_extension.replace("-", "_").replace(".", "_") + ".txt"


def split_lines(text: str) -> List[str]:
    """Split on CRLF, CR and LF only; form feeds stay inside their line."""
    lines = _LINE_BREAK.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def transform_line(line: str) -> str:
    if not line.strip():
        return PARAGRAPH_BREAK
    return escape(line, _XML_ENTITIES)


def transform_lines(lines: Iterable[str]) -> List[str]:
    return [transform_line(line) for line in lines]


def transform_text(text: str) -> str:
    lines = transform_lines(split_lines(text))
    return "\n".join(lines) + "\n" if lines else ""


def select_license_files(source_dir: Path, include: Union[str, Sequence[str]]) -> List[Path]:
    patterns = [include] if isinstance(include, str) else list(include)
    return sorted(
        (p for p in Path(source_dir).iterdir()
         if p.is_file() and any(fnmatch.fnmatchcase(p.name, pat) for pat in patterns)),
        key=lambda p: p.name,
    )


def aggregate(source_dir: Path, include_pattern: Union[str, Sequence[str]], output_dir: Path) -> AggregationReport:
    """
    Transform every license file under source_dir matching include_pattern into output_dir.

    Non-matching files are ignored. A file that cannot be read or written, or
    whose normalized name was already produced by an earlier file, is recorded
    in the report and the remaining files are still processed.
    """
    source_dir = Path(source_dir)
    output_dir = Path(output_dir)
    report = AggregationReport(output_dir=output_dir)
    if not source_dir.is_dir():
        report.failures.append(AggregationFailure(str(source_dir), "license directory not found"))
        logger.error("License directory %s not found", source_dir)
        return report
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        report.failures.append(AggregationFailure(str(output_dir), f"cannot create output dir: {e}"))
        logger.error("Cannot create license output dir %s: %s", output_dir, e)
        return report

    selected = select_license_files(source_dir, include_pattern)
    if not selected:
        logger.warning("No license files in %s match %s", source_dir, include_pattern)
    claimed: Dict[str, str] = {}
    for src in selected:
        target_name = normalize_license_name(src.name)
        if target_name in claimed:
            msg = f"resource name {target_name} already taken by {claimed[target_name]}"
            logger.error("License %s skipped: %s", src.name, msg)
            report.failures.append(AggregationFailure(src.name, msg))
            continue
        claimed[target_name] = src.name
        try:
            lines = transform_lines(split_lines(src.read_text(encoding="utf-8")))
            (output_dir / target_name).write_text("\n".join(lines) + "\n" if lines else "", encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("License %s failed: %s", src.name, e)
            report.failures.append(AggregationFailure(src.name, str(e)))
            continue
        logger.debug("License %s -> %s (%d lines)", src.name, target_name, len(lines))
        report.entries.append(LicenseEntry(src.name, target_name, lines))
    logger.info("Aggregated %d license file(s) into %s", len(report.entries), output_dir)
    return report


def aggregate_from_config(cfg: Optional[Config] = None, output_dir: Optional[Path] = None) -> AggregationReport:
    cfg = cfg or get_config()
    source_dir = Path(cfg.get("licenses.source_dir") or cfg.repo_root / "LICENSES")
    if output_dir is None:
        configured = cfg.get("licenses.output_dir")
        output_dir = Path(configured) if configured else license_output_dir(cfg.build_dir)
    return aggregate(source_dir, cfg.get("licenses.include", []), Path(output_dir))


def license_output_dir(build_dir: Path) -> Path:
    return Path(build_dir) / "generated" / "licenses" / "main" / "res" / "raw"
