import json
from datetime import datetime, timedelta, timezone

import pytest

from job_scanner import cli
from job_scanner.core.models import ScanSettings


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    now = datetime.now(timezone.utc)
    inbox = [
        {
            "id": "c1",
            "date": (now - timedelta(days=1)).isoformat(),
            "from": "careers@stripe.com",
            "subject": "Thank you for applying to Stripe!",
            "body": "We received your application for the Backend Engineer position.",
        },
        {
            "id": "n1",
            "date": (now - timedelta(days=2)).isoformat(),
            "from": "news@blog.example.com",
            "subject": "This week in engineering",
            "body": "Our top stories.",
        },
    ]
    (tmp_path / "inbox.json").write_text(json.dumps(inbox), encoding="utf-8")
    config = {
        "data_dir": str(tmp_path / "data"),
        "export_dir": str(tmp_path / "exports"),
        "source": {
            "class": "job_scanner.adapters.source_json.JsonFileSource",
            "settings": {"path": str(tmp_path / "inbox.json")},
        },
        "pipeline": {"item_delay": 0, "rate_limit_backoff": 0},
    }
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(config), encoding="utf-8")
    return tmp_path, str(config_path)


def test_parser_rejects_unknown_time_period():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["run", "--days", "10"])


def test_parse_setting_pairs():
    updates = cli._parse_setting_pairs(
        ["active_provider=claude", "email_limit=25", "api_keys.claude=$CLAUDE_KEY"],
        ScanSettings(),
    )
    assert updates["active_provider"] == "claude"
    assert updates["email_limit"] == 25
    assert updates["api_keys"]["claude"] == "$CLAUDE_KEY"


@pytest.mark.parametrize("pair", ["email_limit=0", "time_period=10", "active_provider=bard", "colour=blue", "novalue"])
def test_parse_setting_pairs_rejects_bad_values(pair):
    with pytest.raises(SystemExit):
        cli._parse_setting_pairs([pair], ScanSettings())


def test_mask_hides_literal_keys():
    assert cli._mask("sk-1234567890") == "sk-1..."
    assert cli._mask("$OPENAI_API_KEY") == "$OPENAI_API_KEY"
    assert cli._mask("") == ""


def test_run_export_and_stats(workspace, capsys):
    root, config_path = workspace
    cli.main(["--config", config_path, "run", "--provider", "rules"])
    out = capsys.readouterr().out
    assert "Emails scanned:      2" in out
    assert "Confirmations found: 1" in out
    assert "New records:         1" in out

    cli.main(["--config", config_path, "run", "--provider", "rules", "--json"])
    summary = json.loads(capsys.readouterr().out)
    assert summary["emails_scanned"] == 0
    assert summary["duplicates_skipped"] == 2

    cli.main(["--config", config_path, "export"])
    assert "job_applications.csv" in capsys.readouterr().out
    exported = (root / "exports" / "job_applications.csv").read_text(encoding="utf-8-sig")
    assert "Stripe" in exported
    assert "Backend Engineer" in exported

    cli.main(["--config", config_path, "stats"])
    out = capsys.readouterr().out
    assert "Emails scanned so far: 2" in out
    assert "Records saved:         1" in out

    cli.main(["--config", config_path, "clear-history"])
    cli.main(["--config", config_path, "stats"])
    assert "Emails scanned so far: 0" in capsys.readouterr().out


def test_run_without_key_fails_validation(workspace):
    _, config_path = workspace
    with pytest.raises(SystemExit, match="No API key configured for OPENAI"):
        cli.main(["--config", config_path, "run"])


def test_export_without_records(workspace):
    _, config_path = workspace
    with pytest.raises(SystemExit, match="No records found"):
        cli.main(["--config", config_path, "export"])


def test_settings_set_and_show(workspace, capsys):
    root, config_path = workspace
    cli.main(["--config", config_path, "settings", "set", "active_provider=rules", "time_period=30"])
    out = capsys.readouterr().out
    assert "Settings saved." in out
    stored = json.loads((root / "data" / "settings.json").read_text(encoding="utf-8"))
    assert stored["active_provider"] == "rules"
    assert stored["time_period"] == 30
