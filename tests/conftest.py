import shutil
import subprocess

import pytest

from policy_guard import audit


def git(cwd, *args):
    return subprocess.run(
        [
            "git",
            "-c",
            "user.name=Policy Guard Tests",
            "-c",
            "user.email=tests@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


@pytest.fixture(autouse=True)
def audit_paths(tmp_path, monkeypatch):
    """Keep the block log and audit DB of every test inside tmp_path."""
    db_path = tmp_path / "audit" / "policy-guard.db"
    monkeypatch.setenv("POLICY_GUARD_DB_PATH", str(db_path))
    monkeypatch.setenv("POLICY_GUARD_LOG_FILE", str(tmp_path / "audit" / "policy-guard.log"))
    monkeypatch.delenv("POLICY_GUARD_LOG_LEVEL", raising=False)
    yield db_path
    audit.close()


@pytest.fixture
def git_repo(tmp_path):
    """A throwaway repository with two commits, on branch ``main``."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q", "-b", "main")
    git(repo, "commit", "-q", "--allow-empty", "-m", "first")
    git(repo, "commit", "-q", "--allow-empty", "-m", "second")
    return repo
