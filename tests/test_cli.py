"""Tests for the navigator CLI."""

import json
from pathlib import Path

from click.testing import CliRunner

from navigator.cli.main import cli

CLUSTER_MANIFEST = """\
apiVersion: navigator.jetstack.io/v1alpha1
kind: CassandraCluster
metadata:
  name: demo
  namespace: db
spec:
  version: "3.11.2"
  image:
    repository: cassandra
    tag: "3.11.2"
  pilotImage:
    repository: quay.io/jetstack/navigator-pilot
    tag: v0.1.0
  nodePools:
    - name: ringnodes
      replicas: 3
"""

SCALE_STATUS = """\
status:
  nodePools:
    ringnodes:
      readyReplicas: 1
      version: "3.11.2"
"""

SETTLED_STATUS = """\
status:
  nodePools:
    ringnodes:
      readyReplicas: 3
      version: "3.11.2"
"""


def runner() -> CliRunner:
    return CliRunner()


def _write(tmp_path: Path, text: str, name: str = "cluster.yaml") -> str:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


# --- plan command ---


class TestPlanCommand:
    def test_create_when_no_status(self, tmp_path: Path):
        result = runner().invoke(cli, ["plan", _write(tmp_path, CLUSTER_MANIFEST)])
        assert result.exit_code == 0
        assert "db/demo: CreateNodePool" in result.output
        assert "Create node pool ringnodes with 3 replicas" in result.output

    def test_scale_out_json(self, tmp_path: Path):
        path = _write(tmp_path, CLUSTER_MANIFEST + SCALE_STATUS)
        result = runner().invoke(cli, ["plan", path, "--json-output"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data == [{
            "cluster": "db/demo",
            "action": "ScaleOut",
            "node_pool": "ringnodes",
            "description": "Scale node pool ringnodes from 1 to 3 replicas",
        }]

    def test_no_action(self, tmp_path: Path):
        path = _write(tmp_path, CLUSTER_MANIFEST + SETTLED_STATUS)
        result = runner().invoke(cli, ["plan", path])
        assert result.exit_code == 0
        assert "db/demo: no action" in result.output

    def test_no_clusters(self, tmp_path: Path):
        path = _write(tmp_path, "apiVersion: v1\nkind: Service\nmetadata:\n  name: s\n")
        result = runner().invoke(cli, ["plan", path])
        assert result.exit_code == 1
        assert "no CassandraCluster or ElasticsearchCluster found" in result.output

    def test_missing_file(self, tmp_path: Path):
        result = runner().invoke(cli, ["plan", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "nope.yaml" in result.output


# --- validate command ---


class TestValidateCommand:
    def test_valid_file(self, tmp_path: Path):
        result = runner().invoke(cli, ["validate", _write(tmp_path, CLUSTER_MANIFEST)])
        assert result.exit_code == 0
        assert "OK" in result.output
        assert "1 object(s) loaded" in result.output
        assert "All 1 file(s) valid." in result.output

    def test_unsupported_kind(self, tmp_path: Path):
        path = _write(tmp_path, "apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: c\n")
        result = runner().invoke(cli, ["validate", path])
        assert result.exit_code == 1
        assert "FAIL" in result.output
        assert "unsupported kind 'ConfigMap'" in result.output

    def test_invalid_cluster(self, tmp_path: Path):
        bad = CLUSTER_MANIFEST.replace("name: ringnodes", "name: ring-nodes")
        result = runner().invoke(cli, ["validate", _write(tmp_path, bad)])
        assert result.exit_code == 1
        assert "document 0 (CassandraCluster)" in result.output

    def test_not_a_mapping(self, tmp_path: Path):
        result = runner().invoke(cli, ["validate", _write(tmp_path, "- a\n- b\n")])
        assert result.exit_code == 1
        assert "is not a mapping" in result.output

    def test_mixed_files(self, tmp_path: Path):
        good = _write(tmp_path, CLUSTER_MANIFEST, "good.yaml")
        bad = _write(tmp_path, "kind: Nope\n", "bad.yaml")
        result = runner().invoke(cli, ["validate", good, bad])
        assert result.exit_code == 1
        assert "1 error(s) found." in result.output


# --- names command ---


class TestNamesCommand:
    def test_derived_names(self, tmp_path: Path):
        result = runner().invoke(cli, ["names", _write(tmp_path, CLUSTER_MANIFEST)])
        assert result.exit_code == 0
        assert "CassandraCluster db/demo" in result.output
        assert "seed provider service: cass-demo-seeds" in result.output
        assert "service account:       cass-demo" in result.output
        assert "pilot role:            cass-demo-pilot" in result.output
        assert "node pool ringnodes: cass-demo-ringnodes" in result.output
        assert "hash=" in result.output


# --- run command ---


class TestRunCommand:
    def test_manifest_requires_in_memory(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = _write(tmp_path, CLUSTER_MANIFEST)
        result = runner().invoke(cli, ["run", "--manifest", path])
        assert result.exit_code == 2
        assert "--manifest requires --in-memory" in result.output

    def test_bad_manifest(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = _write(tmp_path, "kind: Nope\n")
        result = runner().invoke(cli, ["run", "--in-memory", "-f", path])
        assert result.exit_code == 1
        assert "unsupported kind 'Nope'" in result.output

    def test_unknown_controller(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _write(tmp_path, "controllers: [Redis]\n", "navigator.yaml")
        result = runner().invoke(cli, ["run", "--in-memory"])
        assert result.exit_code == 1
        assert "Unknown controller 'Redis'" in result.output

    def test_missing_config(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner().invoke(cli, ["run", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestVersion:
    def test_version_option(self):
        result = runner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output
