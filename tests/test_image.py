import json

import pytest

from nodeshim.config import ShimSettings
from nodeshim.image import (
    ResolvedImage,
    parse_engine_constraint,
    parse_manifest,
    parse_version_file,
    resolve_image,
)


def write_manifest(project_dir, engines):
    (project_dir / "package.json").write_text(json.dumps({"name": "app", "engines": engines}))


@pytest.mark.unit
@pytest.mark.parametrize(
    "content,expected",
    [
        ("18.2.0\n", "18"),
        ("v16", "16"),
        ("lts/hydrogen 18", "18"),
        ("22", "22"),
        ("lts/*\n", None),
        ("", None),
    ],
)
def test_parse_version_file(tmp_path, content, expected):
    path = tmp_path / ".nvmrc"
    path.write_text(content)
    assert parse_version_file(path) == expected


@pytest.mark.unit
def test_parse_version_file_missing(tmp_path):
    assert parse_version_file(tmp_path / ".nvmrc") is None


@pytest.mark.unit
def test_parse_version_file_binary_garbage(tmp_path):
    """Undecodable content is no signal, not an error."""
    path = tmp_path / ".nvmrc"
    path.write_bytes(b"\xff\xfe\x00\x81")
    assert parse_version_file(path) is None


@pytest.mark.unit
def test_parse_version_file_directory(tmp_path):
    (tmp_path / ".nvmrc").mkdir()
    assert parse_version_file(tmp_path / ".nvmrc") is None


@pytest.mark.unit
@pytest.mark.parametrize(
    "constraint,expected",
    [
        (">=20.0.0", "20"),
        ("18", "18"),
        ("=16.14", "16"),
        ("^18.0.0", "18"),
        ("~14.17.0", "14"),
        (">= 18", "18"),
        (">=18 <21", "18"),
        ("*", None),
        ("", None),
    ],
)
def test_parse_engine_constraint(constraint, expected):
    assert parse_engine_constraint(constraint) == expected


@pytest.mark.unit
def test_parse_manifest(project_dir):
    write_manifest(project_dir, {"node": ">=20.0.0"})
    assert parse_manifest(project_dir / "package.json") == "20"


@pytest.mark.unit
@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        '{"engines": "node 18"}',
        '{"engines": {"node": 18}}',
        '{"engines": {"npm": ">=9"}}',
        '{"name": "app"}',
    ],
)
def test_parse_manifest_malformed(project_dir, content):
    """Malformed manifests degrade to no signal."""
    (project_dir / "package.json").write_text(content)
    assert parse_manifest(project_dir / "package.json") is None


@pytest.mark.unit
def test_resolve_image_default(project_dir, settings):
    image = resolve_image(project_dir, settings)

    assert image.reference == "node:20-alpine"
    assert image.source == "default"


@pytest.mark.unit
def test_resolve_image_nvmrc(project_dir, settings):
    (project_dir / ".nvmrc").write_text("18.2.0\n")

    image = resolve_image(project_dir, settings)

    assert image.reference == "node:18-alpine"
    assert image.source == ".nvmrc"


@pytest.mark.unit
def test_resolve_image_node_version(project_dir, settings):
    (project_dir / ".node-version").write_text("21.1.0")

    assert resolve_image(project_dir, settings).reference == "node:21-alpine"


@pytest.mark.unit
def test_nvmrc_wins_over_engines(project_dir, settings):
    (project_dir / ".nvmrc").write_text("16")
    (project_dir / ".node-version").write_text("18")
    write_manifest(project_dir, {"node": ">=20.0.0"})

    image = resolve_image(project_dir, settings)

    assert image.major == "16"
    assert image.source == ".nvmrc"


@pytest.mark.unit
def test_node_version_wins_over_engines(project_dir, settings):
    (project_dir / ".node-version").write_text("18")
    write_manifest(project_dir, {"node": ">=20.0.0"})

    assert resolve_image(project_dir, settings).major == "18"


@pytest.mark.unit
def test_engines_used_without_version_files(project_dir, settings):
    write_manifest(project_dir, {"node": ">=22.1.0"})

    image = resolve_image(project_dir, settings)

    assert image.reference == "node:22-alpine"
    assert image.source == "package.json"


@pytest.mark.unit
def test_malformed_nvmrc_falls_through(project_dir, settings):
    """An .nvmrc without digits falls through to the next source."""
    (project_dir / ".nvmrc").write_text("lts/*")
    (project_dir / ".node-version").write_text("18")

    assert resolve_image(project_dir, settings).major == "18"


@pytest.mark.unit
def test_malformed_sources_use_default(project_dir, settings):
    (project_dir / ".nvmrc").write_text("node")
    (project_dir / "package.json").write_text("{broken")

    assert resolve_image(project_dir, settings).reference == "node:20-alpine"


@pytest.mark.unit
def test_image_override_wins(project_dir, home_dir):
    (project_dir / ".nvmrc").write_text("16")
    settings = ShimSettings.load(project_dir, {"NODE_IMAGE": "custom/node:dev"}, home_dir)

    image = resolve_image(project_dir, settings)

    assert image.reference == "custom/node:dev"
    assert image.source == "override"


@pytest.mark.unit
def test_variant_and_default_from_settings(project_dir, settings):
    settings.variant = "bookworm-slim"
    settings.default_version = "22"

    assert resolve_image(project_dir, settings).reference == "node:22-bookworm-slim"


@pytest.mark.unit
def test_resolved_image_reference():
    assert ResolvedImage(major="18").reference == "node:18-alpine"
    assert ResolvedImage(major=None).reference == "node:alpine"
    assert ResolvedImage(major="18", override="node:lts").reference == "node:lts"
