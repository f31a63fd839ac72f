from pathlib import Path

import pytest
from click.testing import CliRunner

from releaseci.cli import cli

from conftest import FakeRedis

WORKFLOW = str(Path(__file__).resolve().parents[1] / "releaseci_workflow.py")


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setenv("GITHUB_REPOSITORY", "stacks-network/stacks-blockchain")
    monkeypatch.setenv("RELEASECI_POLL_INTERVAL", "0.01")
    monkeypatch.setenv("RELEASECI_MAX_WORKERS", "4")
    return CliRunner()


def test_version_command(runner):
    result = runner.invoke(cli, ["version", "--ref", "master", "--sha", "abcdef0123", "--tag", ""])
    assert result.exit_code == 0
    assert "primary_tag=abcdef0" in result.output
    assert "legacy_tag=latest-legacy" in result.output
    assert "GIT_COMMIT=abcdef0" in result.output


def test_version_rejects_bad_commit(runner):
    result = runner.invoke(cli, ["version", "--ref", "master", "--sha", "zzz"])
    assert result.exit_code == 2
    assert "Configuration error" in result.output


def test_plan_command(runner):
    result = runner.invoke(
        cli, ["plan", "--workflow", WORKFLOW, "--event", "pr", "--ref", "refs/pull/3/merge", "--sha", "abcdef0123"]
    )
    assert result.exit_code == 0
    assert "Publish gate: closed (pull request without tag)" in result.output
    assert "dist[windows-x64]" in result.output
    assert "create-release (stage" in result.output


def test_dry_run_tagged_release(runner):
    result = runner.invoke(
        cli,
        ["run", "--workflow", WORKFLOW, "--dry-run", "--ref", "refs/heads/master", "--sha", "abcdef0123", "--tag", "v2"],
    )
    assert result.exit_code == 0, result.output
    assert "would create release 'Release v2'" in result.output
    assert "would upload linux-x64.zip" in result.output
    assert "RUN STATUS: SUCCEEDED" in result.output


def test_missing_workflow(runner, tmp_path):
    result = runner.invoke(cli, ["run", "--workflow", str(tmp_path / "nope.py"), "--ref", "master", "--sha", "abcdef0"])
    assert result.exit_code == 2


def test_version_uses_the_workflow_version_arg(runner):
    result = runner.invoke(cli, ["version", "--workflow", WORKFLOW, "--ref", "master", "--sha", "abcdef0123"])
    assert result.exit_code == 0, result.output
    assert "STACKS_NODE_VERSION=abcdef0" in result.output
    assert not any(line.strip().startswith("NODE_VERSION=") for line in result.output.splitlines())


def test_version_without_a_workflow_uses_the_default_arg(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["version", "--ref", "master", "--sha", "abcdef0123"])
    assert result.exit_code == 0, result.output
    assert "NODE_VERSION=abcdef0" in result.output
    assert "STACKS_NODE_VERSION" not in result.output


@pytest.mark.parametrize("workers", ["0", "-1"])
def test_workers_must_be_positive(runner, workers):
    result = runner.invoke(
        cli,
        ["run", "--workflow", WORKFLOW, "--dry-run", "--workers", workers, "--ref", "master", "--sha", "abcdef0123"],
    )
    assert result.exit_code == 2
    assert "--workers" in result.output


def test_run_registers_in_shared_groups(runner, monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr("releaseci.concurrency.redis.from_url", lambda url, decode_responses=False: client)
    monkeypatch.setenv("RELEASECI_REDIS_URL", "redis://ci:6379/0")

    result = runner.invoke(
        cli,
        ["run", "--workflow", WORKFLOW, "--dry-run", "--event", "pr", "--ref", "refs/pull/3/merge", "--sha", "abcdef0123"],
    )
    assert result.exit_code == 0, result.output
    group = "releaseci:runs:releaseci-refs/pull/3/merge"
    assert group in client.expiries
    assert client.hgetall(group) == {}
