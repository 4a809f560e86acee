"""
dbset - Generation Pipeline
===========================
Connects every phase of build-time generation:

    Schema file → Parse → Validate → Compile → Render → Export

Workflow::

    1. Load the schema from a JSON/YAML file (or accept in-memory objects).
    2. Parse it into ``EntityDeclaration`` objects + ``GenerationConfig``.
    3. Run the validation pipeline (validators.py).
    4. Compile each entity: analyse, plan every shape (facade.py).
    5. Render one module per entity plus the package ``__init__.py``.
    6. Hand the files to ``PackageExporter``.
    7. Return a ``GenerationReport`` with metrics and status.

Errors are collected per step and surfaced in the report; a failed step stops
the pipeline.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml
from pydantic import ValidationError

from dbset.analyzer import parse_declaration
from dbset.errors import ConfigError, GenerationError
from dbset.exporters import ExportManifest, ExportResult, PackageExporter
from dbset.facade import CompiledEntity, compile_entity
from dbset.models import EntityDeclaration, GenerationConfig
from dbset.templates import TemplateGenerator
from dbset.utils import Timer, count_lines
from dbset.validators import ValidationResult, validate_full

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.generator")

_CONFIG_KEYS: Tuple[str, ...] = ("config", "generation_config")


# ---------------------------------------------------------------------------
# Generation report
# ---------------------------------------------------------------------------


@dataclass(frozen=False, slots=True)
class GenerationStepMetric:
    """Timing and outcome for a single pipeline step."""

    step_name: str = ""
    success: bool = True
    elapsed_seconds: float = 0.0
    detail: str = ""


@dataclass(frozen=False, slots=True)
class GenerationReport:
    """Everything ``DbSetGenerator`` learned during one run."""

    success: bool = False
    package_name: str = ""
    output_directory: str = ""

    total_entities: int = 0
    total_files: int = 0
    total_bytes: int = 0
    total_lines: int = 0
    total_elapsed_seconds: float = 0.0

    step_metrics: List[GenerationStepMetric] = field(default_factory=list)
    input_errors: List[str] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)
    generation_errors: List[str] = field(default_factory=list)
    export_errors: List[str] = field(default_factory=list)

    compiled: List[CompiledEntity] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)
    manifest: Optional[ExportManifest] = None

    def summary(self) -> str:
        """Return a human-readable summary string."""
        rule: str = "=" * 60
        thin: str = "─" * 60
        lines: List[str] = [rule, "  dbset — Generation Report", rule]
        lines.append(f"  Status:           {'SUCCESS' if self.success else 'FAILED'}")
        lines.append(f"  Package:          {self.package_name}")
        lines.append(f"  Output:           {self.output_directory}")
        lines.append(f"  Entities:         {self.total_entities}")
        lines.append(f"  Files written:    {self.total_files}")
        lines.append(f"  Total lines:      {self.total_lines:,}")
        lines.append(f"  Total bytes:      {self.total_bytes:,}")
        lines.append(f"  Total time:       {self.total_elapsed_seconds:.3f}s")
        lines.append(thin)

        if self.step_metrics:
            lines.append("  Pipeline Steps:")
            for step in self.step_metrics:
                icon: str = "✓" if step.success else "✗"
                lines.append(
                    f"    {icon} {step.step_name:<20s} "
                    f"{step.elapsed_seconds:>7.3f}s  {step.detail}"
                )

        sections: List[Tuple[str, List[str], str]] = [
            ("Input Errors", self.input_errors, "✗"),
            ("Validation Errors", self.validation_errors, "✗"),
            ("Validation Warnings", self.validation_warnings, "⚠"),
            ("Generation Errors", self.generation_errors, "✗"),
            ("Export Errors", self.export_errors, "✗"),
        ]
        for title, items, icon in sections:
            if items:
                lines.append(thin)
                lines.append(f"  {title} ({len(items)}):")
                lines.extend(f"    {icon} {item}" for item in items)

        lines.append(rule)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Schema loader helpers
# ---------------------------------------------------------------------------


def _load_json_file(path: Path) -> Dict[str, Any]:
    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object at top level, got {type(data).__name__}.")
    return data


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping at top level, got {type(data).__name__}.")
    return data


def load_schema_file(path: Path) -> Dict[str, Any]:
    """
    Load an entity schema file (JSON or YAML), dispatching on the extension.

    Raises:
        FileNotFoundError: the file does not exist.
        ValueError: the file cannot be parsed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Schema file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Schema path is not a file: {path}")

    suffix: str = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return _load_yaml_file(path)
    if suffix == ".json":
        return _load_json_file(path)

    # YAML is a superset of JSON.
    logger.info("Unknown extension '%s' — parsing as YAML.", suffix)
    return _load_yaml_file(path)


def parse_raw_schema(raw: Dict[str, Any]) -> Tuple[List[EntityDeclaration], GenerationConfig]:
    """
    Parse a loaded schema file into declarations and a generation config.

    Expected top-level keys:
        - ``entities`` (a list of entity blocks) or ``entity`` (a single one)
        - ``config`` / ``generation_config`` (optional)

    Raises:
        ConfigError: a key is missing or a block does not validate.
    """
    if "entities" in raw:
        blocks: Any = raw["entities"]
        if not isinstance(blocks, list):
            raise ConfigError("'entities' must be a list of entity declarations.")
    elif "entity" in raw:
        blocks = [raw["entity"]]
    else:
        raise ConfigError(
            "Cannot find entity declarations. Expected top-level key 'entities' or 'entity'."
        )

    entities: List[EntityDeclaration] = [parse_declaration(block) for block in blocks]

    config_data: Dict[str, Any] = {}
    for key in _CONFIG_KEYS:
        if key in raw:
            config_data = raw[key] or {}
            break
    else:
        logger.info("No generation config found in input — using defaults.")

    try:
        config: GenerationConfig = GenerationConfig.model_validate(config_data)
    except ValidationError as exc:
        raise ConfigError(f"Config validation failed: {exc}") from exc

    return entities, config


# ---------------------------------------------------------------------------
# DbSetGenerator
# ---------------------------------------------------------------------------


class DbSetGenerator:
    """
    Pipeline orchestrator for build-time generation.

    Usage::

        generator = DbSetGenerator()
        report = generator.generate_from_file(Path("entities.yaml"), Path("./out"))
        print(report.summary())

    The generator is reusable; create once, call ``generate`` many times.
    """

    def __init__(self, *, fail_on_warnings: bool = False) -> None:
        self._fail_on_warnings: bool = fail_on_warnings

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def generate_from_file(
        self,
        schema_path: Path,
        output_dir: Optional[Path] = None,
        *,
        config_overrides: Optional[Dict[str, Any]] = None,
        validate_only: bool = False,
    ) -> GenerationReport:
        """Full pipeline: load file → parse → validate → compile → render → export."""
        report: GenerationReport = GenerationReport()
        start: float = time.perf_counter()

        with Timer("load_schema") as t_load:
            try:
                raw: Dict[str, Any] = load_schema_file(Path(schema_path))
            except (OSError, ValueError) as exc:
                return self._fail_input(report, "Load Schema File", t_load, exc, start)
        report.step_metrics.append(GenerationStepMetric(
            "Load Schema File", True, t_load.elapsed, f"from {Path(schema_path).name}"
        ))

        with Timer("parse_schema") as t_parse:
            try:
                if config_overrides:
                    key: str = next((k for k in _CONFIG_KEYS if k in raw), "config")
                    merged: Dict[str, Any] = dict(raw.get(key) or {})
                    merged.update(config_overrides)
                    raw[key] = merged
                entities, config = parse_raw_schema(raw)
            except ValueError as exc:
                return self._fail_input(report, "Parse Schema", t_parse, exc, start)
        report.step_metrics.append(GenerationStepMetric(
            "Parse Schema", True, t_parse.elapsed, f"{len(entities)} entities parsed"
        ))

        return self._run_pipeline(entities, config, output_dir, report, start, validate_only)

    def generate(
        self,
        entities: Sequence[EntityDeclaration],
        config: GenerationConfig,
        output_dir: Optional[Path] = None,
        *,
        validate_only: bool = False,
    ) -> GenerationReport:
        """Full pipeline from already-parsed declarations."""
        return self._run_pipeline(
            list(entities), config, output_dir, GenerationReport(),
            time.perf_counter(), validate_only,
        )

    # -----------------------------------------------------------------
    # Internal: master pipeline
    # -----------------------------------------------------------------

    def _run_pipeline(
        self,
        entities: List[EntityDeclaration],
        config: GenerationConfig,
        output_dir: Optional[Path],
        report: GenerationReport,
        start: float,
        validate_only: bool,
    ) -> GenerationReport:
        target: Path = Path(output_dir if output_dir is not None else config.output_dir)
        report.package_name = config.package_name
        report.output_directory = str(target.resolve())
        report.total_entities = len(entities)

        if not self._step_validate(entities, config, report):
            return self._finalise(report, start)

        report.compiled = self._step_compile(entities, report)
        if report.generation_errors:
            return self._finalise(report, start)

        report.files = self._step_render(report.compiled, config, report)
        if report.generation_errors or validate_only:
            return self._finalise(report, start)

        self._step_export(report.files, config, target, report)
        return self._finalise(report, start)

    def _step_validate(
        self,
        entities: List[EntityDeclaration],
        config: GenerationConfig,
        report: GenerationReport,
    ) -> bool:
        with Timer("validation") as t:
            result: ValidationResult = validate_full(entities, config)

        report.validation_errors.extend(str(e) for e in result.errors)
        report.validation_warnings.extend(str(w) for w in result.warnings)
        for warning in result.warnings:
            logger.warning("  ⚠ %s", warning)

        if result.has_errors:
            detail: str = f"{len(result.errors)} error(s)"
        elif result.has_warnings:
            detail = f"{len(result.warnings)} warning(s)"
        else:
            detail = "all checks passed"
        ok: bool = result.is_valid and not (self._fail_on_warnings and result.has_warnings)
        report.step_metrics.append(GenerationStepMetric("Validate", ok, t.elapsed, detail))
        if not ok and self._fail_on_warnings and result.is_valid:
            report.validation_errors.append("Warnings treated as errors (--strict).")
        return ok

    def _step_compile(
        self,
        entities: List[EntityDeclaration],
        report: GenerationReport,
    ) -> List[CompiledEntity]:
        compiled: List[CompiledEntity] = []
        with Timer("compile") as t:
            for decl in entities:
                try:
                    compiled.append(compile_entity(decl))
                except GenerationError as exc:
                    report.generation_errors.append(f"{type(exc).__name__}: {exc}")
                    logger.error("Compiling %s failed: %s", decl.name, exc)
        statements: int = sum(len(c.statements()) for c in compiled)
        report.step_metrics.append(GenerationStepMetric(
            "Compile Entities", not report.generation_errors, t.elapsed,
            f"{len(compiled)} entities, {statements} statements",
        ))
        return compiled

    def _step_render(
        self,
        compiled: List[CompiledEntity],
        config: GenerationConfig,
        report: GenerationReport,
    ) -> Dict[str, str]:
        with Timer("render") as t:
            files: Dict[str, str] = TemplateGenerator(config).generate_all(compiled)
        lines: int = sum(count_lines(c) for c in files.values())
        report.step_metrics.append(GenerationStepMetric(
            "Render Sources", True, t.elapsed, f"{len(files)} files, ~{lines:,} lines"
        ))
        logger.info("Rendered %d file(s) in %.3fs.", len(files), t.elapsed)
        return files

    def _step_export(
        self,
        files: Dict[str, str],
        config: GenerationConfig,
        output_dir: Path,
        report: GenerationReport,
    ) -> None:
        exporter: PackageExporter = PackageExporter(config, output_dir)
        result: ExportResult = exporter.export(files, [c.name for c in report.compiled])

        report.manifest = result.manifest
        report.total_files = result.manifest.total_files
        report.total_bytes = result.manifest.total_bytes
        report.total_lines = result.manifest.total_lines
        report.export_errors.extend(result.errors)
        report.step_metrics.append(GenerationStepMetric(
            "Export", result.success, result.elapsed_seconds,
            f"{result.manifest.total_files} files, {result.manifest.total_bytes:,} bytes",
        ))

    # -----------------------------------------------------------------
    # Internal: report helpers
    # -----------------------------------------------------------------

    def _fail_input(
        self,
        report: GenerationReport,
        step: str,
        timer: Timer,
        exc: Exception,
        start: float,
    ) -> GenerationReport:
        report.input_errors.append(str(exc))
        report.step_metrics.append(GenerationStepMetric(step, False, timer.elapsed, str(exc)))
        logger.error("%s failed: %s", step, exc)
        return self._finalise(report, start)

    @staticmethod
    def _finalise(report: GenerationReport, start: float) -> GenerationReport:
        report.total_elapsed_seconds = time.perf_counter() - start
        report.success = not (
            report.input_errors
            or report.validation_errors
            or report.generation_errors
            or report.export_errors
        )
        return report


__all__: List[str] = [
    "DbSetGenerator",
    "GenerationReport",
    "GenerationStepMetric",
    "load_schema_file",
    "parse_raw_schema",
]

logger.debug("dbset.generator loaded.")
