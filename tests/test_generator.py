"""
tests/test_generator.py
Integration tests for the build-time pipeline (dbset.generator) and the
package exporter (dbset.exporters).

Tests cover:
- Schema loading (YAML, JSON, unknown extensions, malformed files)
- Raw schema parsing into declarations and GenerationConfig
- Full generation runs on entities_example.yaml
- validate-only runs, strict mode, input errors
- Overwrite protection and the export manifest
- GenerationReport.summary()
"""

from __future__ import annotations

import json
import pathlib
from typing import Any, Dict

import pytest

from dbset.errors import ConfigError
from dbset.exporters import MANIFEST_NAME, PackageExporter
from dbset.generator import DbSetGenerator, load_schema_file, parse_raw_schema
from dbset.models import GenerationConfig


# ===========================================================================
# load_schema_file
# ===========================================================================


class TestLoadSchemaFile:

    def test_loads_example_yaml(self, example_schema_path: pathlib.Path) -> None:
        data = load_schema_file(example_schema_path)
        assert [e["name"] for e in data["entities"]] == ["User", "Order"]

    def test_loads_json(self, tmp_path: pathlib.Path, user_schema_dict: Dict[str, Any]) -> None:
        path = tmp_path / "entities.json"
        path.write_text(json.dumps(user_schema_dict), encoding="utf-8")
        assert load_schema_file(path) == user_schema_dict

    def test_unknown_extension_is_parsed_as_yaml(self, tmp_path: pathlib.Path) -> None:
        path = tmp_path / "entities.schema"
        path.write_text("entities: []\n", encoding="utf-8")
        assert load_schema_file(path) == {"entities": []}

    def test_missing_file(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_schema_file(tmp_path / "nope.yaml")

    def test_invalid_json(self, tmp_path: pathlib.Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_schema_file(path)

    def test_top_level_must_be_a_mapping(self, tmp_path: pathlib.Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="YAML mapping"):
            load_schema_file(path)


# ===========================================================================
# parse_raw_schema
# ===========================================================================


class TestParseRawSchema:

    def test_entities_and_config(self, example_dict: Dict[str, Any]) -> None:
        entities, config = parse_raw_schema(example_dict)
        assert [e.name for e in entities] == ["User", "Order"]
        assert config.package_name == "store"
        assert config.overwrite_existing is False

    def test_single_entity_block(self, user_entity: Dict[str, Any]) -> None:
        entities, config = parse_raw_schema({"entity": user_entity})
        assert [e.name for e in entities] == ["User"]
        assert config == GenerationConfig()

    def test_generation_config_alias(self, user_entity: Dict[str, Any]) -> None:
        _, config = parse_raw_schema(
            {"entities": [user_entity], "generation_config": {"package_name": "db"}}
        )
        assert config.package_name == "db"

    def test_missing_entities(self) -> None:
        with pytest.raises(ConfigError, match="'entities' or 'entity'"):
            parse_raw_schema({"config": {}})

    def test_entities_must_be_a_list(self, user_entity: Dict[str, Any]) -> None:
        with pytest.raises(ConfigError, match="must be a list"):
            parse_raw_schema({"entities": user_entity})

    def test_invalid_config(self, user_entity: Dict[str, Any]) -> None:
        with pytest.raises(ConfigError, match="Config validation failed"):
            parse_raw_schema({"entities": [user_entity], "config": {"package_name": "a-b"}})

    def test_unknown_config_key(self, user_entity: Dict[str, Any]) -> None:
        with pytest.raises(ConfigError):
            parse_raw_schema({"entities": [user_entity], "config": {"colour": "blue"}})


# ===========================================================================
# DbSetGenerator
# ===========================================================================


class TestDbSetGenerator:

    def test_example_schema_generates(
        self, output_dir: pathlib.Path, example_schema_path: pathlib.Path
    ) -> None:
        report = DbSetGenerator().generate_from_file(example_schema_path, output_dir)
        assert report.success, report.summary()
        assert report.total_entities == 2
        assert report.package_name == "store"
        for rel_path in ("store/__init__.py", "store/user.py", "store/order.py"):
            assert (output_dir / rel_path).is_file()
        assert (output_dir / MANIFEST_NAME).is_file()
        assert report.total_files == 3
        assert report.total_bytes > 0

    def test_written_files_match_report(self, output_dir: pathlib.Path, user_yaml_path: pathlib.Path) -> None:
        report = DbSetGenerator().generate_from_file(user_yaml_path, output_dir)
        assert report.success
        for rel_path, content in report.files.items():
            assert (output_dir / rel_path).read_text(encoding="utf-8") == content

    def test_validate_only_writes_nothing(self, output_dir: pathlib.Path, user_yaml_path: pathlib.Path) -> None:
        report = DbSetGenerator().generate_from_file(user_yaml_path, output_dir, validate_only=True)
        assert report.success
        assert sorted(report.files) == ["store/__init__.py", "store/user.py"]
        assert [c.name for c in report.compiled] == ["User"]
        assert not any(output_dir.iterdir())
        assert report.manifest is None

    def test_validation_errors_stop_the_pipeline(
        self, output_dir: pathlib.Path, write_schema: Any
    ) -> None:
        path = write_schema({"entities": [{"name": "Log", "fields": [{"name": "line", "type": "str"}]}]})
        report = DbSetGenerator().generate_from_file(path, output_dir)
        assert not report.success
        assert any("FIELD_ERROR" in e for e in report.validation_errors)
        assert report.compiled == []
        assert not any(output_dir.iterdir())

    def test_strict_mode_fails_on_warnings(
        self, output_dir: pathlib.Path, user_schema_dict: Dict[str, Any], write_schema: Any
    ) -> None:
        user_schema_dict["entities"][0]["fields"][3]["type"] = "Optional[str]"
        path = write_schema(user_schema_dict)

        lenient = DbSetGenerator().generate_from_file(path, output_dir, validate_only=True)
        assert lenient.success
        assert any("OPTIONAL_UNIQUE_FIELD" in w for w in lenient.validation_warnings)

        strict = DbSetGenerator(fail_on_warnings=True).generate_from_file(
            path, output_dir, validate_only=True
        )
        assert not strict.success
        assert "Warnings treated as errors (--strict)." in strict.validation_errors

    def test_missing_file_is_an_input_error(self, tmp_path: pathlib.Path) -> None:
        report = DbSetGenerator().generate_from_file(tmp_path / "missing.yaml", tmp_path)
        assert not report.success
        assert report.input_errors
        assert report.step_metrics[0].step_name == "Load Schema File"
        assert not report.step_metrics[0].success

    def test_unparseable_schema_is_an_input_error(
        self, tmp_path: pathlib.Path, write_schema: Any
    ) -> None:
        path = write_schema({"tables": []})
        report = DbSetGenerator().generate_from_file(path, tmp_path / "out")
        assert not report.success
        assert "Expected top-level key" in report.input_errors[0]

    def test_config_overrides(self, output_dir: pathlib.Path, user_yaml_path: pathlib.Path) -> None:
        report = DbSetGenerator().generate_from_file(
            user_yaml_path,
            output_dir,
            config_overrides={"package_name": "warehouse", "write_manifest": False},
        )
        assert report.success
        assert (output_dir / "warehouse" / "user.py").is_file()
        assert not (output_dir / MANIFEST_NAME).exists()

    def test_refuses_to_overwrite(self, output_dir: pathlib.Path, user_yaml_path: pathlib.Path) -> None:
        generator = DbSetGenerator()
        assert generator.generate_from_file(user_yaml_path, output_dir).success

        again = generator.generate_from_file(user_yaml_path, output_dir)
        assert not again.success
        assert len(again.export_errors) == 2
        assert all("Refusing to overwrite" in e for e in again.export_errors)

        forced = generator.generate_from_file(
            user_yaml_path, output_dir, config_overrides={"overwrite_existing": True}
        )
        assert forced.success

    def test_generate_from_objects(self, output_dir: pathlib.Path, example_dict: Dict[str, Any]) -> None:
        entities, config = parse_raw_schema(example_dict)
        report = DbSetGenerator().generate(entities, config, output_dir)
        assert report.success
        assert [m.step_name for m in report.step_metrics] == [
            "Validate", "Compile Entities", "Render Sources", "Export",
        ]

    def test_summary(self, output_dir: pathlib.Path, user_yaml_path: pathlib.Path) -> None:
        report = DbSetGenerator().generate_from_file(user_yaml_path, output_dir)
        text = report.summary()
        assert "dbset — Generation Report" in text
        assert "SUCCESS" in text
        assert "✓ Export" in text

    def test_failed_summary_lists_errors(self, tmp_path: pathlib.Path) -> None:
        report = DbSetGenerator().generate_from_file(tmp_path / "missing.yaml", tmp_path)
        text = report.summary()
        assert "FAILED" in text
        assert "Input Errors (1):" in text


# ===========================================================================
# PackageExporter
# ===========================================================================


class TestPackageExporter:

    FILES: Dict[str, str] = {
        "store/__init__.py": '"""store"""\n',
        "store/user.py": "USER = 1\nORDER = 2\n",
    }

    def test_writes_files_and_manifest(self, output_dir: pathlib.Path) -> None:
        result = PackageExporter(GenerationConfig(package_name="store"), output_dir).export(
            self.FILES, ["User"]
        )
        assert result.success
        assert result.skipped == ()
        manifest = json.loads((output_dir / MANIFEST_NAME).read_text(encoding="utf-8"))
        assert manifest["package_name"] == "store"
        assert manifest["entities"] == ["User"]
        assert manifest["total_files"] == 2
        assert manifest["total_lines"] == 3
        assert [f["relative_path"] for f in manifest["files"]] == sorted(self.FILES)
        assert all(len(f["sha256"]) == 64 for f in manifest["files"])

    def test_skips_existing_files(self, output_dir: pathlib.Path) -> None:
        existing = output_dir / "store" / "user.py"
        existing.parent.mkdir(parents=True)
        existing.write_text("# hand written\n", encoding="utf-8")

        result = PackageExporter(GenerationConfig(), output_dir).export(self.FILES)
        assert not result.success
        assert result.skipped == ("store/user.py",)
        assert existing.read_text(encoding="utf-8") == "# hand written\n"
        assert (output_dir / "store" / "__init__.py").is_file()
        assert not (output_dir / MANIFEST_NAME).exists()

    def test_overwrite_existing(self, output_dir: pathlib.Path) -> None:
        existing = output_dir / "store" / "user.py"
        existing.parent.mkdir(parents=True)
        existing.write_text("# stale\n", encoding="utf-8")

        config = GenerationConfig(overwrite_existing=True)
        result = PackageExporter(config, output_dir).export(self.FILES)
        assert result.success
        assert existing.read_text(encoding="utf-8") == self.FILES["store/user.py"]

    def test_no_temp_files_left_behind(self, output_dir: pathlib.Path) -> None:
        PackageExporter(GenerationConfig(), output_dir).export(self.FILES)
        assert not list(output_dir.rglob("*.tmp"))
