"""Unit tests for renderctl.py - Renderer CLI."""

import json

import pytest
import requests
from click.testing import CliRunner
from unittest.mock import MagicMock, patch

from renderctl import cli


def ok(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def http_error(status_code, payload):
    response = MagicMock(status_code=status_code)
    response.json.return_value = payload
    error = requests.exceptions.HTTPError(f"{status_code} Error", response=response)
    response.raise_for_status.side_effect = error
    return response


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_request():
    with patch("renderctl.requests.request") as request:
        yield request


class TestStatus:
    """Tests for the status command."""

    def test_ready(self, runner, mock_request):
        mock_request.return_value = ok({"ready": True, "version": "123"})

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Ready: yes" in result.output
        assert "Version: 123" in result.output
        mock_request.assert_called_once_with(
            "GET", "http://localhost:8000/api/v1/status", timeout=30
        )

    def test_not_rendered(self, runner, mock_request):
        mock_request.return_value = http_error(
            404, {"detail": "Configuration has not been rendered yet"}
        )

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "Configuration has not been rendered yet" in result.output

    def test_custom_url(self, runner, mock_request):
        mock_request.return_value = ok({"ready": True, "version": "1"})

        runner.invoke(cli, ["--url", "http://renderer:9000/api/v1/", "status"])

        assert mock_request.call_args[0][1] == "http://renderer:9000/api/v1/status"

    def test_connection_error(self, runner, mock_request):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "refused" in result.output


class TestGet:
    """Tests for the get command."""

    def test_list_table(self, runner, mock_request):
        mock_request.return_value = ok(
            [
                {
                    "kind": "AuditPolicyConfig",
                    "resource_id": "audit-policy",
                    "required": True,
                    "output": False,
                    "present": True,
                    "version": "7",
                },
                {
                    "kind": "ConfigStatus",
                    "resource_id": "static-pods",
                    "required": False,
                    "output": True,
                    "present": False,
                    "version": None,
                },
            ]
        )

        result = runner.invoke(cli, ["get"])

        assert result.exit_code == 0
        assert "AuditPolicyConfig" in result.output
        assert "output" in result.output
        assert "✓" in result.output
        assert "✗" in result.output

    def test_single_json_with_reveal(self, runner, mock_request):
        resource = {
            "kind": "SchedulerConfig",
            "namespace": "controlplane",
            "resource_id": "scheduler",
            "version": "3",
            "spec": {"config": {"parallelism": 4}},
            "redacted": False,
        }
        mock_request.return_value = ok(resource)

        result = runner.invoke(
            cli, ["get", "SchedulerConfig", "-o", "json", "--reveal"]
        )

        assert result.exit_code == 0
        assert json.loads(result.output) == resource
        assert mock_request.call_args[1]["params"] == {"reveal": "true"}

    def test_single_table_redacted(self, runner, mock_request):
        mock_request.return_value = ok(
            {
                "kind": "AuditPolicyConfig",
                "resource_id": "audit-policy",
                "version": "7",
                "spec": "<redacted>",
            }
        )

        result = runner.invoke(cli, ["get", "AuditPolicyConfig"])

        assert result.exit_code == 0
        assert "<redacted>" in result.output

    def test_unknown_kind(self, runner, mock_request):
        mock_request.return_value = http_error(404, {"detail": "Unknown kind: Nope"})

        result = runner.invoke(cli, ["get", "Nope"])

        assert result.exit_code == 1
        assert "Unknown kind: Nope" in result.output


class TestApply:
    """Tests for the apply command."""

    def test_apply_yaml(self, runner, mock_request, tmp_path):
        spec_file = tmp_path / "audit.yaml"
        spec_file.write_text("config:\n  rules:\n  - level: Metadata\n")
        mock_request.return_value = ok({"kind": "AuditPolicyConfig", "version": "9"})

        result = runner.invoke(cli, ["apply", "AuditPolicyConfig", str(spec_file)])

        assert result.exit_code == 0
        assert "AuditPolicyConfig applied at version 9" in result.output
        method, url = mock_request.call_args[0]
        assert method == "PUT"
        assert url.endswith("/resources/AuditPolicyConfig")
        assert mock_request.call_args[1]["json"] == {
            "spec": {"config": {"rules": [{"level": "Metadata"}]}}
        }

    def test_apply_json(self, runner, mock_request, tmp_path):
        spec_file = tmp_path / "scheduler.json"
        spec_file.write_text(json.dumps({"config": {"parallelism": 2}}))
        mock_request.return_value = ok({"kind": "SchedulerConfig", "version": "2"})

        result = runner.invoke(cli, ["apply", "SchedulerConfig", str(spec_file)])

        assert result.exit_code == 0
        assert mock_request.call_args[1]["json"] == {
            "spec": {"config": {"parallelism": 2}}
        }

    def test_apply_non_mapping(self, runner, mock_request, tmp_path):
        spec_file = tmp_path / "bad.yaml"
        spec_file.write_text("- a\n- b\n")

        result = runner.invoke(cli, ["apply", "AuditPolicyConfig", str(spec_file)])

        assert result.exit_code == 2
        mock_request.assert_not_called()

    def test_apply_rejected(self, runner, mock_request, tmp_path):
        spec_file = tmp_path / "audit.yaml"
        spec_file.write_text("config: nope\n")
        mock_request.return_value = http_error(
            400, {"detail": "Invalid AuditPolicyConfig spec"}
        )

        result = runner.invoke(cli, ["apply", "AuditPolicyConfig", str(spec_file)])

        assert result.exit_code == 1
        assert "Invalid AuditPolicyConfig spec" in result.output


class TestDelete:
    """Tests for the delete command."""

    def test_delete_confirmed(self, runner, mock_request):
        mock_request.return_value = ok({"message": "deleted"})

        result = runner.invoke(cli, ["delete", "AuditPolicyConfig", "--yes"])

        assert result.exit_code == 0
        assert "AuditPolicyConfig deleted" in result.output
        assert mock_request.call_args[0][0] == "DELETE"

    def test_delete_aborted(self, runner, mock_request):
        result = runner.invoke(cli, ["delete", "AuditPolicyConfig"], input="n\n")

        assert result.exit_code == 1
        mock_request.assert_not_called()
