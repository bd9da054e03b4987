"""
Tests for the contest CLI.

CLI commands drive their own event loop, so these tests are synchronous and
inspect the database through a separate service instance.
"""

import asyncio
import csv
from datetime import timedelta

import pytest
from click.testing import CliRunner
from sqlalchemy import select

from contest.auth import decode_access_token
from contest.cli import cli, read_registrations
from contest.config import ContestConfig
from contest.gate import get_config
from contest.models import Admin, User
from contest.service import ContestService
from contest.tests.factories import TEST_JWT_SECRET

HEADER = [f"col{i}" for i in range(19)]


def _row(name, email, status="Complete"):
    row = [""] * 19
    row[1] = name
    row[2] = email
    row[18] = status
    return row


def _write_csv(path, rows):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(HEADER)
        writer.writerows(rows)
    return str(path)


def _query(database_url, task):
    """Run ``task(service)`` against the CLI's database."""
    service = ContestService(
        ContestConfig(argv=["--database-url", database_url, "--run-scheduler", "false"])
    )

    async def _main():
        await service.startup()
        try:
            return await task(service)
        finally:
            await service.shutdown()

    return asyncio.run(_main())


async def _all_users(service):
    async with service.async_session() as session:
        return (await session.execute(select(User))).scalars().all()


@pytest.fixture
def invoke(database_url, tmp_path, monkeypatch):
    # Keep stray contest.toml files out of config discovery
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(
            cli, ["--database-url", database_url, "--create-tables", *args]
        )

    return _invoke


class TestReadRegistrations:
    def test_keeps_completed_rows_only(self, tmp_path):
        path = _write_csv(
            tmp_path / "reg.csv",
            [
                _row("Ada", "ada@example.com"),
                _row("Bob", "bob@example.com", status="Partial"),
                ["too", "short"],
                _row("Cy", "cy@example.com"),
            ],
        )

        assert read_registrations(path) == [
            ("ada@example.com", "Ada"),
            ("cy@example.com", "Cy"),
        ]


class TestUserCommands:
    def test_add_users_from_file_skips_existing(self, invoke, database_url, tmp_path):
        path = _write_csv(
            tmp_path / "reg.csv",
            [_row("Ada", "ada@example.com"), _row("Bob", "bob@example.com")],
        )

        first = invoke("add-users", "--users", path)
        second = invoke(
            "add-users", "--users", path, "--email", "cy@example.com", "--name", "Cy"
        )

        assert first.exit_code == 0, first.output
        assert "Added 2 user(s), skipped 0" in first.output
        assert second.exit_code == 0, second.output
        assert "Added 1 user(s), skipped 2" in second.output
        users = _query(database_url, _all_users)
        assert sorted(u.email for u in users) == [
            "ada@example.com",
            "bob@example.com",
            "cy@example.com",
        ]
        assert len({u.pid for u in users}) == 3

    def test_add_users_requires_a_source(self, invoke):
        result = invoke("add-users")
        assert result.exit_code != 0
        assert "--users" in result.output

    def test_add_admin(self, invoke, database_url):
        invoke("add-users", "--email", "ada@example.com", "--name", "Ada")

        result = invoke("add-admin", "ada@example.com")

        assert result.exit_code == 0, result.output

        async def _admins(service):
            async with service.async_session() as session:
                return (await session.execute(select(Admin))).scalars().all()

        assert len(_query(database_url, _admins)) == 1

    def test_add_admin_unknown_user(self, invoke):
        result = invoke("add-admin", "nobody@example.com")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_issue_token(self, invoke, database_url, monkeypatch):
        monkeypatch.setenv("CONTEST_JWT_SECRET", TEST_JWT_SECRET)
        invoke("add-users", "--email", "ada@example.com", "--name", "Ada")

        result = invoke("issue-token", "ada@example.com")

        assert result.exit_code == 0, result.output
        token = result.output.strip().splitlines()[-1]
        (user,) = _query(database_url, _all_users)
        assert decode_access_token(token, TEST_JWT_SECRET) == user.pid


class TestContestCommands:
    def test_update_timings_auto(self, invoke, database_url):
        result = invoke("update-timings", "--auto", "--period", "30")

        assert result.exit_code == 0, result.output
        config = _query(database_url, self._config)
        period = timedelta(minutes=30)
        assert config.submission_end == config.submission_start + period
        assert config.voting_start == config.submission_end + period
        assert config.voting_end == config.voting_start + period

    def test_update_timings_rejects_bad_period(self, invoke):
        result = invoke("update-timings", "--auto", "--period", "0")
        assert result.exit_code != 0

    def test_show_leaderboard_without_config(self, invoke):
        result = invoke("show-leaderboard", "--show", "true")
        assert result.exit_code == 1

    def test_show_leaderboard_toggles(self, invoke, database_url):
        invoke("update-timings", "--auto")

        result = invoke("show-leaderboard", "--show", "true")

        assert result.exit_code == 0, result.output
        assert _query(database_url, self._config).show_leaderboard

    def test_assign_and_gen_without_config(self, invoke):
        result = invoke("assign-and-gen")
        assert result.exit_code == 0, result.output
        assert "nothing to do" in result.output

    def test_full_flow(self, invoke, database_url):
        for i in range(3):
            invoke("add-users", "--email", f"u{i}@example.com", "--name", f"U{i}")
        invoke(
            "update-timings",
            "--ss",
            "2020-01-01T00:00:00",
            "--se",
            "2020-01-02T00:00:00",
            "--vs",
            "2020-01-03T00:00:00",
            "--ve",
            "2020-01-04T00:00:00",
        )

        result = invoke("assign-and-gen")
        assert result.exit_code == 0, result.output
        assert "Assignment ran: yes" in result.output
        assert "Scoring ran:    yes" in result.output

        board = invoke("leaderboard")
        assert board.exit_code == 0, board.output
        assert "No scores found." in board.output

    @staticmethod
    async def _config(service):
        async with service.async_session() as session:
            return await get_config(session)
