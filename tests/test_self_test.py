"""Tests for zentao_mcp/self_test.py against the fake ZenTao session."""

import asyncio
from unittest.mock import patch

import pytest

from zentao_mcp.self_test import main, run_self_test

ARGV = [
    "--zentao-url", "https://zentao.example.com",
    "--zentao-account", "alice",
    "--zentao-password", "secret",
]


@pytest.fixture
def assigned(fake):
    fake.products = [{"id": 1, "name": "A", "totalBugs": 3}, {"id": 2, "name": "B", "totalBugs": 1}]
    fake.bugs = {
        1: [
            {"id": 11, "status": "active", "assignedTo": "alice"},
            {"id": 12, "status": "active", "assignedTo": "alice"},
            {"id": 13, "status": "closed", "assignedTo": "alice"},
        ],
        2: [{"id": 21, "status": "active", "assignedTo": "bob"}],
    }
    return fake


def run_main(client, argv):
    with patch("zentao_mcp.self_test.ZentaoClient", return_value=client):
        main(ARGV + argv)


class TestRunSelfTest:
    def test_returns_decoded_envelope(self, client, assigned):
        payload = asyncio.run(run_self_test(client))
        assert payload["status"] == 1
        assert payload["result"]["total"] == 2
        assert payload["result"]["bugs"] == []


class TestMain:
    def test_prints_count_and_products(self, client, assigned, capsys):
        run_main(client, [])
        out = capsys.readouterr().out
        assert "assigned active bugs: 2" in out
        assert "products: A(2)" in out

    def test_matching_expected_does_not_exit(self, client, assigned):
        run_main(client, ["--expected", "2"])

    def test_mismatched_expected_exits_2(self, client, assigned, capsys):
        with pytest.raises(SystemExit) as exc:
            run_main(client, ["--expected", "5"])
        assert exc.value.code == 2
        captured = capsys.readouterr()
        assert "assigned active bugs: 2" in captured.out
        assert "Expected 5, got 2." in captured.err

    def test_tool_failure_exits_1(self, client, assigned, capsys):
        assigned.bug_errors[2] = {"error": "invalid token"}
        with pytest.raises(SystemExit) as exc:
            run_main(client, [])
        assert exc.value.code == 1
        assert "invalid token" in capsys.readouterr().err

    def test_missing_settings_exit_1(self, monkeypatch):
        for name in ("ZENTAO_URL", "ZENTAO_ACCOUNT", "ZENTAO_PASSWORD"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1
