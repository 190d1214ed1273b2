"""
Integration tests for the change feed CLI.
"""

import json

import pytest

from registry.schemareg_server.tools.changes_cli import build_parser, main

REGISTRY = "acme"


def _run(capsys, data_dir, *args):
    code = main(["--data-dir", data_dir, "--registry", REGISTRY, *args])
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestChangesCLI:
    """Tests for the changes CLI entry point."""

    def test_init_creates_tables(self, capsys, data_dir):
        code, out, _ = _run(capsys, data_dir, "init")

        assert code == 0
        result = json.loads(out)
        assert "global_change_tracker" in result["tables"]
        assert "user_change_views" in result["tables"]

    def test_init_selected_groups(self, capsys, data_dir):
        code, out, _ = _run(capsys, data_dir, "init", "--group", "change_log")

        assert code == 0
        assert json.loads(out)["tables"] == ["global_change_tracker"]

    def test_missing_registry(self, capsys, data_dir):
        code, _, err = _run(capsys, data_dir, "summary", "--user", "u1")

        assert code == 1
        assert json.loads(err)["code"] == "REGISTRY_NOT_FOUND"

    def test_subscribe_record_summary_and_mark_seen(self, capsys, data_dir):
        _run(capsys, data_dir, "init")

        code, out, _ = _run(capsys, data_dir, "subscribe", "--user", "u1", "--type", "P", "--type-id", "p1")
        assert code == 0
        assert json.loads(out)["subscriptionId"]

        code, out, _ = _run(
            capsys,
            data_dir,
            "record",
            "--entity-type",
            "product",
            "--entity-id",
            "p1",
            "--entity-name",
            "Acme",
            "--change-type",
            "updated",
            "--data",
            '{"before": {"name": "A"}, "after": {"name": "Acme"}}',
        )
        assert code == 0
        change_id = json.loads(out)["changeId"]

        code, out, _ = _run(capsys, data_dir, "summary", "--user", "u1")
        summary = json.loads(out)
        assert summary["products"]["updated"] == 1
        assert summary["totalChanges"] == 1
        assert summary["visibilityMode"] == "subscriptions"

        code, out, _ = _run(capsys, data_dir, "changes", "--user", "u1", "--entity-type", "product")
        [change] = json.loads(out)
        assert change["id"] == change_id
        assert change["isBreakingChange"] is False

        code, out, _ = _run(capsys, data_dir, "mark-seen", "--user", "u1", change_id, change_id)
        assert json.loads(out) == {"marked": 1}

        code, out, _ = _run(capsys, data_dir, "summary", "--user", "u1")
        assert json.loads(out)["totalChanges"] == 0

    def test_duplicate_subscribe_exits_non_zero(self, capsys, data_dir):
        _run(capsys, data_dir, "init")
        _run(capsys, data_dir, "subscribe", "--user", "u1", "--type", "D", "--type-id", "d1")

        code, _, err = _run(capsys, data_dir, "subscribe", "--user", "u1", "--type", "D", "--type-id", "d1")

        assert code == 1
        assert json.loads(err)["error"] == "User is already subscribed"

    def test_unsubscribe(self, capsys, data_dir):
        _run(capsys, data_dir, "init")
        _run(capsys, data_dir, "subscribe", "--user", "u1", "--type", "C", "--type-id", "c1")

        code, out, _ = _run(capsys, data_dir, "unsubscribe", "--user", "u1", "--type", "C", "--type-id", "c1")
        assert code == 0
        assert json.loads(out) == {"unsubscribed": True}

        code, _, err = _run(capsys, data_dir, "unsubscribe", "--user", "u1", "--type", "C", "--type-id", "c1")
        assert code == 1
        assert json.loads(err)["code"] == "NOT_SUBSCRIBED"

    def test_invalid_enum_exits_non_zero(self, capsys, data_dir):
        _run(capsys, data_dir, "init")

        code, _, err = _run(
            capsys, data_dir, "record", "--entity-type", "table", "--entity-id", "t1", "--change-type", "created"
        )

        assert code == 1
        assert json.loads(err)["code"] == "VALIDATION_ERROR"

    def test_invalid_json_data(self, capsys, data_dir):
        _run(capsys, data_dir, "init")

        code, _, err = _run(
            capsys,
            data_dir,
            "record",
            "--entity-type",
            "product",
            "--entity-id",
            "p1",
            "--change-type",
            "created",
            "--data",
            "{not json",
        )

        assert code == 1
        assert json.loads(err)["code"] == "VALIDATION_ERROR"

    def test_non_object_data(self, capsys, data_dir):
        _run(capsys, data_dir, "init")

        code, _, err = _run(
            capsys,
            data_dir,
            "record",
            "--entity-type",
            "product",
            "--entity-id",
            "p1",
            "--change-type",
            "created",
            "--data",
            "[1]",
        )

        assert code == 1
        error = json.loads(err)
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["field"] == "change_data"

    def test_record_without_change_log(self, capsys, data_dir):
        _run(capsys, data_dir, "init", "--group", "hierarchy")

        code, out, _ = _run(
            capsys, data_dir, "record", "--entity-type", "product", "--entity-id", "p1", "--change-type", "created"
        )

        assert code == 0
        assert json.loads(out) == {
            "success": False,
            "changeId": None,
            "error": "Change tracking table not initialized",
        }

    def test_mark_seen_without_views(self, capsys, data_dir):
        _run(capsys, data_dir, "init", "--group", "change_log")

        code, _, err = _run(capsys, data_dir, "mark-seen", "--user", "u1", "x")

        assert code == 1
        assert json.loads(err)["code"] == "NOT_INITIALIZED"

    def test_retention_and_cleanup(self, capsys, data_dir):
        _run(capsys, data_dir, "init")

        code, out, _ = _run(capsys, data_dir, "retention")
        assert json.loads(out) == {"retentionDays": 30}

        code, out, _ = _run(capsys, data_dir, "cleanup")
        assert json.loads(out) == {"deleted": 0}

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--registry", REGISTRY])
