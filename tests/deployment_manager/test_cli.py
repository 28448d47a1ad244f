"""
Unit tests for the command line interface.
"""

import json
from unittest.mock import patch

import pytest
import yaml

from deployment_manager.cli import main


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("deployment_manager.cli.setup_logging"):
        yield


@pytest.fixture
def config_path(tmp_path, config):
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(config.model_dump(mode="json")))
    return str(path)


class TestMain:
    def test_missing_config(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "missing.yml")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_generate_config(self, tmp_path):
        path = tmp_path / "generated.yml"
        assert main(["--config", str(path), "--generate-config"]) == 0
        assert path.exists()

    def test_validate_config(self, config_path, capsys):
        assert main(["--config", config_path, "--validate-config"]) == 0
        assert "valid" in capsys.readouterr().out

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.yml"
        path.write_text(yaml.safe_dump({"backup": {"max_num_on_demand_backup": -3}}))
        assert main(["--config", str(path), "--validate-config"]) == 1
        assert "Invalid configuration" in capsys.readouterr().err

    def test_parse_name(self, config_path, capsys, ids):
        assert main(["--config", config_path, "parse-name", ids.deployment_name]) == 0
        parsed = json.loads(capsys.readouterr().out)
        assert parsed == {"subnet": None, "index": ids.index, "instance_id": ids.instance_id}

    def test_parse_invalid_name(self, config_path, capsys):
        assert main(["--config", config_path, "parse-name", "not-a-deployment"]) == 1
        assert "Error" in capsys.readouterr().err

    def test_render_manifest(self, config_path, capsys, ids):
        code = main(
            [
                "--config",
                config_path,
                "render-manifest",
                "--plan",
                ids.plan_id,
                "--instance",
                ids.instance_id,
                "--index",
                str(ids.index),
                "--parameters",
                '{"size": "large"}',
            ]
        )

        assert code == 0
        manifest = yaml.safe_load(capsys.readouterr().out)
        assert manifest["name"] == ids.deployment_name
        assert manifest["properties"]["size"] == "large"

    def test_render_unknown_plan(self, config_path, capsys):
        args = ["--config", config_path, "render-manifest", "--plan", "x", "--instance", "i", "--index", "0"]
        assert main(args) == 1
        assert "Unknown plan" in capsys.readouterr().err

    def test_no_command_prints_help(self, config_path, capsys):
        assert main(["--config", config_path]) == 0
        assert "usage" in capsys.readouterr().out
