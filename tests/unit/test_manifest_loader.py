"""Tests for the manifest loader: TOML parsing, required fields, path rules."""

from __future__ import annotations

from pathlib import Path

import pytest

from ontoforge.core.errors import ConfigError
from ontoforge.core.hasher import sha256_hex
from ontoforge.core.manifest_loader import load_manifest, normalize_relpath
from ontoforge.models.manifest import ValidationLevel, WriteMode

USER_RULE = {"name": "user", "output_file": "src/generated/user.py"}


def write_manifest(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "ontoforge.toml"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def render(manifest_text):
    return manifest_text


class TestLoadManifest:
    def test_minimal_manifest(self, tmp_path: Path, render):
        path = write_manifest(tmp_path, render([USER_RULE]))
        manifest = load_manifest(path)
        assert manifest.project_name == "demo"
        assert manifest.ontology.sources == ["ontology/domain.ttl"]
        assert manifest.ontology.base_uri == "https://example.org/"
        assert manifest.rule_names == ["user"]
        assert manifest.rules[0].mode == WriteMode.OVERWRITE
        assert manifest.validation_level == ValidationLevel.STANDARD
        assert manifest.workspace_root == tmp_path
        assert manifest.manifest_hash == sha256_hex(path.read_bytes())

    def test_directory_resolves_default_name(self, tmp_path: Path, render):
        write_manifest(tmp_path, render([USER_RULE]))
        assert load_manifest(tmp_path).manifest_path == tmp_path / "ontoforge.toml"

    def test_all_sections(self, tmp_path: Path, render):
        text = render(
            [
                {
                    "name": "user",
                    "query": "q/u.rq",
                    "template": "t/u.j2",
                    "output_file": "./out/../gen/user.py",
                    "mode": "CreateOnly",
                    "depends_on": ["product"],
                    "language": "python",
                    "bindings": ["name"],
                },
                {"name": "product", "output_file": "gen/product.py"},
            ],
            source=["a.ttl", "b.ttl"],
            shapes=["shapes.ttl"],
            level="strict",
            audit=False,
            cache=False,
            parallel=False,
            max_workers=2,
            inference=[{"name": "derive", "query": "inference/derive.rq"}],
            forbidden_markers=["XXX"],
        )
        manifest = load_manifest(write_manifest(tmp_path, text))
        user = manifest.get_rule("user")
        assert user.output_file == "gen/user.py"
        assert user.mode == WriteMode.CREATE_ONLY
        assert user.depends_on == ["product"]
        assert user.bindings == ["name"]
        assert manifest.ontology.sources == ["a.ttl", "b.ttl"]
        assert manifest.ontology.shapes == ["shapes.ttl"]
        assert manifest.validation_level == ValidationLevel.STRICT
        assert manifest.audit_enabled is False
        assert manifest.cache_enabled is False
        assert manifest.parallel is False
        assert manifest.max_workers == 2
        assert manifest.inference_rules[0].name == "derive"
        assert manifest.forbidden_markers == ["XXX"]

    def test_manifest_is_frozen(self, tmp_path: Path, render):
        manifest = load_manifest(write_manifest(tmp_path, render([USER_RULE])))
        with pytest.raises(Exception):
            manifest.parallel = False  # type: ignore[misc]


class TestManifestErrors:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_manifest(tmp_path / "nope.toml")

    def test_malformed_toml(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Malformed"):
            load_manifest(write_manifest(tmp_path, "[ontology\nsource ="))

    def test_missing_ontology_source(self, tmp_path: Path):
        text = '[ontology]\nbase_uri = "x"\n[[generation.rules]]\nname = "a"\noutput_file = "a.py"\n'
        with pytest.raises(ConfigError, match="ontology.source"):
            load_manifest(write_manifest(tmp_path, text))

    def test_missing_base_uri(self, tmp_path: Path):
        text = '[ontology]\nsource = "o.ttl"\n[[generation.rules]]\nname = "a"\noutput_file = "a.py"\n'
        with pytest.raises(ConfigError, match="base_uri"):
            load_manifest(write_manifest(tmp_path, text))

    def test_missing_rules(self, tmp_path: Path):
        text = '[ontology]\nsource = "o.ttl"\nbase_uri = "x"\n[generation]\ncache = true\n'
        with pytest.raises(ConfigError, match="generation.rules"):
            load_manifest(write_manifest(tmp_path, text))

    def test_rule_missing_output_file(self, tmp_path: Path, render):
        with pytest.raises(ConfigError, match="output_file"):
            load_manifest(write_manifest(tmp_path, render([{"name": "a"}])))

    def test_duplicate_rule_names(self, tmp_path: Path, render):
        rules = [USER_RULE, {"name": "user", "output_file": "other.py"}]
        with pytest.raises(ConfigError, match="Duplicate rule name"):
            load_manifest(write_manifest(tmp_path, render(rules)))

    def test_invalid_mode(self, tmp_path: Path, render):
        rules = [{**USER_RULE, "mode": "Append"}]
        with pytest.raises(ConfigError, match="mode"):
            load_manifest(write_manifest(tmp_path, render(rules)))

    def test_unknown_rule_field(self, tmp_path: Path, render):
        rules = [{**USER_RULE, "ouptut": "typo"}]
        with pytest.raises(ConfigError):
            load_manifest(write_manifest(tmp_path, render(rules)))

    def test_invalid_validation_level(self, tmp_path: Path, render):
        with pytest.raises(ConfigError, match="validation_level"):
            load_manifest(write_manifest(tmp_path, render([USER_RULE], level="paranoid")))

    def test_rule_name_too_long(self, tmp_path: Path, render):
        rules = [{"name": "x" * 129, "output_file": "a.py"}]
        with pytest.raises(ConfigError):
            load_manifest(write_manifest(tmp_path, render(rules)))

    def test_output_escaping_workspace(self, tmp_path: Path, render):
        rules = [{"name": "a", "output_file": "../outside.py"}]
        with pytest.raises(ConfigError, match="escapes"):
            load_manifest(write_manifest(tmp_path, render(rules)))

    def test_absolute_output_rejected(self, tmp_path: Path, render):
        rules = [{"name": "a", "output_file": "/etc/passwd"}]
        with pytest.raises(ConfigError, match="relative"):
            load_manifest(write_manifest(tmp_path, render(rules)))


class TestNormalizeRelpath:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("a/b.py", "a/b.py"),
            ("./a/./b.py", "a/b.py"),
            ("a/x/../b.py", "a/b.py"),
            ("a\\b.py", "a/b.py"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str):
        assert normalize_relpath(raw) == expected

    @pytest.mark.parametrize("raw", ["", "/abs", "..", "../x", "a/../../x", "C:/x"])
    def test_rejects(self, raw: str):
        with pytest.raises(ConfigError):
            normalize_relpath(raw)
