import re
from concurrent.futures import ThreadPoolExecutor

import pytest
import yaml
from pydantic import ValidationError

from provider_e2e import workloads
from provider_e2e.models import EnvEntry, EnvReference, SourceKind

DNS_1123 = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def test_build_basic_one_container_per_image():
    spec = workloads.build_basic("nginx-0-", "foo", "bar", "baz", namespace="e2e", node_name="vk-0")
    assert spec.name.startswith("nginx-0-")
    assert DNS_1123.match(spec.name)
    assert [c.name for c in spec.containers] == ["nginx-0-0", "nginx-0-1", "nginx-0-2"]
    assert [c.image for c in spec.containers] == ["foo", "bar", "baz"]
    assert all(c.env == [] for c in spec.containers)
    assert spec.namespace == "e2e"
    assert spec.node_name == "vk-0"


def test_build_basic_requires_an_image():
    with pytest.raises(ValueError):
        workloads.build_basic("nginx-0-")


def test_names_are_pairwise_distinct_under_concurrency():
    with ThreadPoolExecutor(max_workers=8) as pool:
        specs = list(pool.map(lambda _: workloads.build_basic("nginx-0-", "foo"), range(500)))
    names = [s.name for s in specs]
    assert len(set(names)) == len(names)


def test_build_with_env_attaches_entries_verbatim():
    env = [EnvEntry(name="A", value="1"), *workloads.optional_secret_env()]
    spec = workloads.build_with_env("nginxtest", "foo", env)
    assert len(spec.containers) == 1
    assert spec.containers[0].env == env


def test_optional_shapes_only_reference_optional_entries():
    for spec in (workloads.with_optional_secrets(), workloads.with_optional_config_maps()):
        refs = spec.references()
        assert refs
        assert all(r.optional for r in refs)


def test_mandatory_shapes_carry_a_required_reference():
    secrets = workloads.with_mandatory_secrets().references()
    config_maps = workloads.with_mandatory_config_maps().references()
    assert any(not r.optional for r in secrets)
    assert any(not r.optional for r in config_maps)
    assert {r.source for r in secrets} == {SourceKind.SECRET}
    assert {r.source for r in config_maps} == {SourceKind.CONFIG}


def test_env_entry_needs_exactly_one_source():
    ref = EnvReference(source=SourceKind.SECRET, reference_name="s", key="k")
    with pytest.raises(ValidationError):
        EnvEntry(name="X")
    with pytest.raises(ValidationError):
        EnvEntry(name="X", value="v", reference=ref)


def test_manifest_binds_node_and_renders_references():
    spec = workloads.with_mandatory_config_maps(namespace="e2e", node_name="vk-0")
    manifest = workloads.to_manifest(spec)

    assert manifest["kind"] == "Pod"
    assert manifest["metadata"] == {"name": spec.name, "namespace": "e2e"}
    assert manifest["spec"]["nodeName"] == "vk-0"
    env = manifest["spec"]["containers"][0]["env"]
    assert env[0] == {
        "name": "zero",
        "valueFrom": {"configMapKeyRef": {"name": "configname0", "key": "key0", "optional": True}},
    }
    assert env[1]["valueFrom"]["configMapKeyRef"]["optional"] is False


def test_manifest_uses_secret_key_ref_and_literal_values():
    env = [EnvEntry(name="PLAIN", value="x"), *workloads.optional_secret_env()]
    manifest = workloads.to_manifest(workloads.build_with_env("p-", "foo", env))
    rendered = manifest["spec"]["containers"][0]["env"]
    assert rendered[0] == {"name": "PLAIN", "value": "x"}
    assert "secretKeyRef" in rendered[1]["valueFrom"]


def test_basic_manifest_has_no_env_or_node_when_unset():
    manifest = workloads.to_manifest(workloads.build_basic("p-", "foo"))
    assert "nodeName" not in manifest["spec"]
    assert "env" not in manifest["spec"]["containers"][0]


def test_render_manifest_is_yaml():
    spec = workloads.build_basic("p-", "foo", node_name="vk-0")
    assert yaml.safe_load(workloads.render_manifest(spec)) == workloads.to_manifest(spec)
