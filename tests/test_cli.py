"""Unit tests for hookstream.cli — command parsing and execution."""

import json
from datetime import date

import pytest

import hookstream.cli as cli_mod


@pytest.fixture
def config_path(project_root):
    return str(project_root / "hookstream.yaml")


@pytest.fixture
def transform_file(tmp_path):
    path = tmp_path / "transform.yaml"
    path.write_text(
        "id: tf_cli\n"
        "outputFormat: nested\n"
        "mappings:\n"
        "  - sourcePath: data.object.amount\n"
        "    targetField: amount\n"
        "  - sourcePath: type\n"
        "    targetField: kind\n"
        "    transformType: function\n"
        "    transformFunction: return value.upper()\n",
        encoding="utf-8",
    )
    return str(path)


class TestCLIParsing:
    def test_module_has_expected_commands(self):
        for name in ("cmd_check", "cmd_templates", "cmd_transform", "cmd_simulate",
                     "cmd_logs", "cmd_cleanup_logs"):
            assert hasattr(cli_mod, name)

    def test_no_command_prints_help(self, capsys):
        assert cli_mod.main([]) == 0
        assert "usage: hookstream" in capsys.readouterr().out


class TestCmdCheck:
    def test_valid_config(self, config_path, capsys):
        assert cli_mod.main(["--config", config_path, "check"]) == 0
        out = capsys.readouterr().out
        assert "[OK] TestHooks (staging)" in out
        assert "buffer capacity: 25" in out

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "hookstream.yaml"
        path.write_text("platform:\n  environment: qa\n", encoding="utf-8")
        assert cli_mod.main(["--config", str(path), "check"]) == 1
        out = capsys.readouterr().out
        assert "[ERROR]" in out
        assert "dev/staging/prod" in out


class TestCmdTemplates:
    def test_lists_catalog(self, capsys):
        assert cli_mod.main(["templates"]) == 0
        out = capsys.readouterr().out
        assert "stripe-webhook" in out
        assert "Stripe-Signature" in out


class TestCmdTransform:
    def test_prints_record(self, config_path, transform_file, tmp_path, capsys):
        payload = tmp_path / "payload.json"
        payload.write_text(json.dumps({"type": "charge", "data": {"object": {"amount": 5}}}))
        assert cli_mod.main(["--config", config_path, "transform", transform_file, str(payload)]) == 0
        assert json.loads(capsys.readouterr().out) == {"amount": 5, "kind": "CHARGE"}

    def test_mapping_failures_exit_nonzero(self, config_path, tmp_path, capsys):
        transform = tmp_path / "t.json"
        transform.write_text(json.dumps({
            "mappings": [{
                "targetField": "ratio",
                "transformType": "computed",
                "transformFunction": "return 1 / 0",
                "defaultValue": 0,
            }],
        }))
        payload = tmp_path / "p.json"
        payload.write_text("{}")
        assert cli_mod.main(["--config", config_path, "transform", str(transform), str(payload)]) == 1
        captured = capsys.readouterr()
        assert json.loads(captured.out) == {"ratio": 0}
        assert "[WARN] mapping #0 -> ratio" in captured.err

    def test_missing_file(self, config_path, tmp_path, capsys):
        missing = str(tmp_path / "missing.json")
        assert cli_mod.main(["--config", config_path, "transform", missing, missing]) == 1
        assert "[ERROR]" in capsys.readouterr().out

    def test_invalid_transform(self, config_path, tmp_path, capsys):
        transform = tmp_path / "t.json"
        transform.write_text(json.dumps({"mappings": [{"targetField": "x", "transformType": "function"}]}))
        payload = tmp_path / "p.json"
        payload.write_text("{}")
        assert cli_mod.main(["--config", config_path, "transform", str(transform), str(payload)]) == 1


class TestCmdSimulate:
    def test_template_sample(self, config_path, capsys):
        assert cli_mod.main(["--config", config_path, "simulate", "stripe"]) == 0
        event = json.loads(capsys.readouterr().out)
        assert event["webhookId"] == "stripe"
        assert event["eventType"] == "payment_intent.succeeded"
        assert event["headers"]["user-agent"] == "webhook-simulator"

    def test_with_payload_and_transform(self, config_path, transform_file, tmp_path, capsys):
        payload = tmp_path / "payload.json"
        payload.write_text(json.dumps({"type": "refund", "data": {"object": {"amount": 7}}}))
        args = ["--config", config_path, "simulate", "stripe-webhook",
                "--payload", str(payload), "--transform", transform_file]
        assert cli_mod.main(args) == 0
        event = json.loads(capsys.readouterr().out)
        assert event["eventType"] == "refund"
        assert event["payload"] == {"amount": 7, "kind": "REFUND"}

    def test_unknown_template(self, config_path, capsys):
        assert cli_mod.main(["--config", config_path, "simulate", "nope"]) == 1
        assert "Unknown template" in capsys.readouterr().out


class TestCmdLogs:
    def test_unknown_stream(self, config_path, capsys):
        assert cli_mod.main(["--config", config_path, "logs", "--type", "records"]) == 1
        assert "Unknown log stream" in capsys.readouterr().out

    def test_missing_directory(self, config_path, capsys):
        assert cli_mod.main(["--config", config_path, "logs"]) == 0
        assert "[WARN] No logs found" in capsys.readouterr().out

    def test_prints_entries(self, config_path, project_root, capsys):
        day_file = project_root / "logs" / "webhooks" / "execution" / f"{date.today().isoformat()}.jsonl"
        day_file.parent.mkdir(parents=True)
        day_file.write_text(
            json.dumps({"event": "webhook_ingested", "webhook_id": "gh"}) + "\n"
            + json.dumps({"event": "webhook_ingested", "webhook_id": "stripe"}) + "\n",
            encoding="utf-8",
        )
        assert cli_mod.main(["--config", config_path, "logs", "--webhook", "gh"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert [json.loads(line)["webhook_id"] for line in lines] == ["gh"]


class TestCmdCleanupLogs:
    def test_reports_counts(self, config_path, capsys):
        assert cli_mod.main(["--config", config_path, "cleanup-logs"]) == 0
        assert "deleted 0 file(s), compressed 0 file(s)" in capsys.readouterr().out
