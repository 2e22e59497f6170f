"""Tests for the stackweave command line."""

import json
from pathlib import Path

import pytest
from stackweave.cli.main import build_parser, main
from stackweave.cli.plan import deployment_id_for
from stackweave.cli.up import exit_code_for
from stackweave.composition.results import RunStatus
from stackweave.config.settings import get_settings
from stackweave.core.errors import ExitCode
from stackweave.providers.memory import InMemoryBackend
from stackweave.providers.registry import register_backend

CONFIG = """
config:
  temporal-bench:aks.version: 1.18.14
  temporal-bench:aks.vmsize: Standard_DS2_v2
  temporal-bench:aks.vmcount: 3
  temporal-bench:temporal.version: 1.7.0
  temporal-bench:temporal.visibility: default
  temporal-bench:cassandra.clustersize: 3
"""


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("STACKWEAVE_OUTPUT_STORE", "file")
    monkeypatch.setenv("STACKWEAVE_OUTPUT_DIR", str(tmp_path / "outputs"))
    monkeypatch.setenv("STACKWEAVE_LOOKUP_WAIT_SECONDS", "0")
    monkeypatch.setenv("STACKWEAVE_LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture
def config_file(workspace: Path) -> Path:
    path = workspace / "dev.yaml"
    path.write_text(CONFIG)
    return path


class TestParser:
    def test_up_arguments(self):
        args = build_parser().parse_args(
            ["up", "all-in-one", "--stack", "prod", "--sequential", "--max-concurrency", "4"]
        )

        assert args.program == "all-in-one"
        assert args.stack == "prod"
        assert args.sequential
        assert args.max_concurrency == 4
        assert args.config_path is None

    def test_deployment_id_default(self):
        assert deployment_id_for("k8s", "dev") == "k8s/dev"

    def test_exit_codes(self):
        assert exit_code_for(RunStatus.SUCCEEDED) == ExitCode.SUCCESS
        assert exit_code_for(RunStatus.FAILED) == ExitCode.PARTIAL
        assert exit_code_for(RunStatus.CANCELLED) == ExitCode.CANCELLED


class TestCommands:
    def test_programs(self, workspace, capsys):
        assert main(["programs"]) == 0

        out = capsys.readouterr().out
        assert "all-in-one" in out
        assert "bench" in out

    def test_plan_json(self, config_file, capsys):
        code = main(["plan", "all-in-one", "--config", str(config_file), "--output", "json"])

        assert code == 0
        plan = json.loads(capsys.readouterr().out)
        assert plan["graph"] == "all-in-one/dev"
        assert plan["outputs"] == ["grafanaPassword", "endpoints", "kubectlCommands"]
        assert any(step["identity"] == "temporal/chart" for step in plan["steps"])

    def test_plan_text(self, config_file, capsys):
        code = main(["plan", "all-in-one", "--config", str(config_file)])

        assert code == 0
        out = capsys.readouterr().out
        assert "aks/managed-cluster" in out
        assert "Total:" in out

    def test_up_then_outputs(self, config_file, capsys):
        code = main(["up", "all-in-one", "--config", str(config_file), "--output", "json"])

        assert code == ExitCode.SUCCESS
        run = json.loads(capsys.readouterr().out)
        assert run["status"] == "succeeded"
        assert run["outputs"]["grafanaPassword"] == "[secret]"

        assert main(["outputs", "all-in-one/dev", "--output", "json"]) == 0
        masked = json.loads(capsys.readouterr().out)
        assert masked["grafanaPassword"] == "[secret]"
        assert masked["endpoints"]["web"].startswith("http://")

        assert main(["outputs", "all-in-one/dev", "--show-secrets", "--output", "json"]) == 0
        revealed = json.loads(capsys.readouterr().out)
        assert len(revealed["grafanaPassword"]) == 12

    def test_up_with_failed_node_is_partial(self, config_file, monkeypatch, capsys):
        register_backend("flaky", lambda: InMemoryBackend(fail_on=["bench/registry"]))
        monkeypatch.setenv("STACKWEAVE_BACKEND", "flaky")
        get_settings.cache_clear()

        code = main(["up", "all-in-one", "--config", str(config_file), "--output", "json"])

        assert code == ExitCode.PARTIAL
        run = json.loads(capsys.readouterr().out)
        assert run["failed"][0]["node"] == "bench/registry"
        assert "bench/chart" in run["skipped"]

    def test_outputs_of_unknown_deployment(self, workspace, capsys):
        assert main(["outputs", "nothing/dev"]) == 1


class TestErrorExitCodes:
    def test_missing_config_key(self, workspace):
        assert main(["plan", "all-in-one"]) == ExitCode.CONFIG_ERROR

    def test_unknown_program(self, workspace):
        assert main(["plan", "serverless"]) == ExitCode.CONFIG_ERROR

    def test_missing_config_file(self, workspace):
        assert main(["up", "k8s", "--config", "absent.yaml"]) == ExitCode.CONFIG_ERROR

    def test_unknown_backend(self, config_file, monkeypatch):
        monkeypatch.setenv("STACKWEAVE_BACKEND", "pulumi")
        get_settings.cache_clear()

        assert main(["up", "all-in-one", "--config", str(config_file)]) == ExitCode.CONFIG_ERROR

    def test_unhandled_storage_variant(self, workspace):
        path = workspace / "dev.yaml"
        path.write_text(CONFIG + "  temporal-bench:storage.type: postgres\n")

        assert main(["plan", "all-in-one", "--config", str(path)]) == ExitCode.COMPOSITION_ERROR
