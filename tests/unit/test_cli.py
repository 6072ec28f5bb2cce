from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from statuspage.cli import cli_app
from statuspage.core.exceptions import ConflictError
from statuspage.services.uptime_recorder import RecordSummary

runner = CliRunner()


def test_calculate_uptime_rejects_bad_date():
    result = runner.invoke(cli_app, ["calculate-uptime", "--date", "14/03/2026"])
    assert result.exit_code == 2
    assert "Invalid date" in result.output


def test_list_keys_empty():
    with patch("statuspage.cli._ensure_db", new_callable=AsyncMock), patch(
        "statuspage.services.auth.AuthService.list_keys", new_callable=AsyncMock, return_value=[]
    ):
        result = runner.invoke(cli_app, ["list-keys"])
    assert result.exit_code == 0
    assert "No active API keys found." in result.output


def test_revoke_unknown_key_fails():
    with patch("statuspage.cli._ensure_db", new_callable=AsyncMock), patch(
        "statuspage.services.auth.AuthService.revoke_key", new_callable=AsyncMock, return_value=False
    ):
        result = runner.invoke(cli_app, ["revoke-key", "sp_sk_dead"])
    assert result.exit_code == 1


def test_backfill_reports_summary():
    with patch("statuspage.cli._ensure_db", new_callable=AsyncMock), patch(
        "statuspage.services.uptime_recorder.UptimeRecorder.backfill_missing",
        new_callable=AsyncMock,
        return_value=RecordSummary(recorded=12, skipped=0),
    ) as backfill:
        result = runner.invoke(cli_app, ["backfill", "--days", "3", "--missing-only"])
    assert result.exit_code == 0
    assert "12" in result.output
    backfill.assert_awaited_once_with(3)


def test_revoke_ambiguous_prefix_lists_labels():
    conflict = ConflictError(
        "Prefix 'sp_sk_ab12' matches 2 active keys. Revoke by full key.", details={"labels": ["ci", "deploy"]}
    )
    with patch("statuspage.cli._ensure_db", new_callable=AsyncMock), patch(
        "statuspage.services.auth.AuthService.revoke_key", new_callable=AsyncMock, side_effect=conflict
    ):
        result = runner.invoke(cli_app, ["revoke-key", "sp_sk_ab12"])
    assert result.exit_code == 1
    assert "matches 2 active keys" in result.output
    assert "deploy" in result.output
