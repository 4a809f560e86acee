"""
dbset - Package Exporter
========================
Writes the rendered files of a generated package below the output directory.

- Each file is written atomically (temp file + rename), so an interrupted run
  never leaves a half-written module.
- Existing files are only replaced when ``overwrite_existing`` is set; a
  refused file is reported as an error and the rest are still written.
- A ``dbset_manifest.json`` with sizes, line counts and sha256 checksums is
  written next to the package.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

from dbset.models import GenerationConfig
from dbset.utils import Timer, count_lines, ensure_directory, sha256_hex, write_file

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.exporters")

MANIFEST_NAME: str = "dbset_manifest.json"


# ---------------------------------------------------------------------------
# Export records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FileRecord:
    """One written file."""

    relative_path: str
    size_bytes: int
    line_count: int
    sha256: str


@dataclass(frozen=False, slots=True)
class ExportManifest:
    package_name: str = ""
    generator_version: str = ""
    export_timestamp: str = ""
    output_directory: str = ""
    entities: List[str] = field(default_factory=list)
    total_files: int = 0
    total_bytes: int = 0
    total_lines: int = 0
    files: List[FileRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_name": self.package_name,
            "generator_version": self.generator_version,
            "export_timestamp": self.export_timestamp,
            "output_directory": self.output_directory,
            "entities": list(self.entities),
            "total_files": self.total_files,
            "total_bytes": self.total_bytes,
            "total_lines": self.total_lines,
            "files": [
                {
                    "relative_path": f.relative_path,
                    "size_bytes": f.size_bytes,
                    "line_count": f.line_count,
                    "sha256": f.sha256,
                }
                for f in self.files
            ],
        }

    def to_json(self, indent_size: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent_size, ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class ExportResult:
    """Outcome of ``PackageExporter.export()``."""

    success: bool
    manifest: ExportManifest
    errors: Tuple[str, ...]
    skipped: Tuple[str, ...]
    elapsed_seconds: float


# ---------------------------------------------------------------------------
# PackageExporter
# ---------------------------------------------------------------------------


class PackageExporter:
    """
    Writes generated files to the filesystem.

    Usage::

        exporter = PackageExporter(config, output_dir=Path("./generated"))
        result = exporter.export(files, entities=["User"])

    Not thread-safe; use one exporter per output directory.
    """

    def __init__(self, config: GenerationConfig, output_dir: Path) -> None:
        self._config: GenerationConfig = config
        self._output_dir: Path = output_dir.resolve()
        self._errors: List[str] = []
        self._skipped: List[str] = []
        self._records: List[FileRecord] = []

    def export(
        self,
        generated_files: Dict[str, str],
        entities: Sequence[str] = (),
    ) -> ExportResult:
        """Write every file of *generated_files* (relative path → content)."""
        with Timer("export") as timer:
            try:
                ensure_directory(self._output_dir)
            except OSError as exc:
                self._errors.append(f"Cannot create {self._output_dir}: {exc}")
            else:
                for rel_path in sorted(generated_files):
                    self._write_one(rel_path, generated_files[rel_path])
                if self._config.write_manifest and not self._errors:
                    self._write_manifest(entities)

        manifest: ExportManifest = self._build_manifest(entities)
        result: ExportResult = ExportResult(
            success=not self._errors,
            manifest=manifest,
            errors=tuple(self._errors),
            skipped=tuple(self._skipped),
            elapsed_seconds=timer.elapsed,
        )
        if result.success:
            logger.info(
                "Export completed: %d file(s), %d bytes, %.3fs.",
                manifest.total_files,
                manifest.total_bytes,
                timer.elapsed,
            )
        else:
            logger.error("Export finished with %d error(s).", len(self._errors))
        return result

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _write_one(self, rel_path: str, content: str) -> None:
        target: Path = self._output_dir / rel_path
        if target.exists() and not self._config.overwrite_existing:
            message: str = f"Refusing to overwrite existing file {rel_path} (use --overwrite)."
            self._errors.append(message)
            self._skipped.append(rel_path)
            logger.error(message)
            return
        try:
            size: int = write_file(target, content, atomic=True)
        except OSError as exc:
            message = f"Failed to write {rel_path}: {type(exc).__name__}: {exc}"
            self._errors.append(message)
            logger.error(message)
            return
        self._records.append(
            FileRecord(
                relative_path=rel_path,
                size_bytes=size,
                line_count=count_lines(content),
                sha256=sha256_hex(content),
            )
        )

    def _build_manifest(self, entities: Sequence[str]) -> ExportManifest:
        import dbset

        return ExportManifest(
            package_name=self._config.package_name,
            generator_version=dbset.__version__,
            export_timestamp=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            output_directory=str(self._output_dir),
            entities=list(entities),
            total_files=len(self._records),
            total_bytes=sum(r.size_bytes for r in self._records),
            total_lines=sum(r.line_count for r in self._records),
            files=list(self._records),
        )

    def _write_manifest(self, entities: Sequence[str]) -> None:
        content: str = self._build_manifest(entities).to_json()
        # The manifest is rewritten on every run, whatever overwrite_existing says.
        try:
            write_file(self._output_dir / MANIFEST_NAME, content, atomic=True)
        except OSError as exc:
            self._errors.append(f"Could not write manifest: {exc}")
            logger.error("Failed to write manifest: %s", exc)
            return
        logger.debug("Wrote manifest to %s.", self._output_dir / MANIFEST_NAME)


__all__: List[str] = [
    "MANIFEST_NAME",
    "FileRecord",
    "ExportManifest",
    "ExportResult",
    "PackageExporter",
]

logger.debug("dbset.exporters loaded.")
