import os
import subprocess
from datetime import datetime, timezone

import pytest

from chronolog import (
    BackendError, CommitRecord, DiffStats, FileChange, LogEntry,
    ProgressReporter, RepositoryBackend, make_entry_id,
)

BASE_TS = 1_700_000_000   # 2023-11-14 22:13:20 UTC

GITMODULES = """\
[submodule "alpha"]
\tpath = libs/alpha
\turl = https://example.com/alpha.git
[submodule "beta"]
\tpath = libs/beta
\turl = https://example.com/beta.git
[submodule "gamma"]
\tpath = libs/gamma
\turl = https://example.com/gamma.git
"""


def run_git(repo, *args, timestamp=None):
    env = dict(os.environ)
    if timestamp is not None:
        env["GIT_AUTHOR_DATE"] = env["GIT_COMMITTER_DATE"] = f"@{timestamp} +0000"
    return subprocess.run(
        ["git", "-C", str(repo), "-c", "commit.gpgsign=false"] + list(args),
        check=True, capture_output=True, text=True, env=env,
    )


def commit_files(repo, timestamp, files, message):
    for name, content in files.items():
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    run_git(repo, "add", "--", *files.keys())
    run_git(repo, "commit", "-m", message, timestamp=timestamp)
    return run_git(repo, "rev-parse", "HEAD").stdout.strip()


def init_repo(repo, author="Tester"):
    repo.mkdir(parents=True, exist_ok=True)
    run_git(repo, "init")
    run_git(repo, "config", "user.email", "tester@test.com")
    run_git(repo, "config", "user.name", author)
    return repo


def at(offset):
    return datetime.fromtimestamp(BASE_TS + offset, timezone.utc)


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)


@pytest.fixture
def make_entry():
    """Factory for LogEntry values; ``offset`` is seconds after BASE_TS."""
    def _make(offset, submodule_path=".", commit_hash=None, message="change",
              author="Alice", files=("a.py",)):
        commit_hash = commit_hash or f"{submodule_path}-{offset}".replace("/", "_")
        return LogEntry(
            id=make_entry_id(submodule_path, commit_hash),
            timestamp=at(offset),
            commit_hash=commit_hash,
            author=author,
            message=message,
            submodule_path=submodule_path,
            files_changed=tuple(files),
            diff_stats=DiffStats(insertions=3, deletions=1, files_changed_count=len(files)),
        )
    return _make


@pytest.fixture
def three_repo_entries(make_entry):
    """Three repositories with 5, 3 and 2 commits, all timestamps distinct."""
    root = [make_entry(o, ".") for o in (0, 300, 600, 900, 1200)]
    alpha = [make_entry(o, "libs/alpha") for o in (100, 400, 700)]
    beta = [make_entry(o, "libs/beta") for o in (200, 500)]
    # collectors hand back newest-first per repository
    return list(reversed(root)) + list(reversed(alpha)) + list(reversed(beta))


@pytest.fixture
def superproject(tmp_path):
    """
    Root repository (5 commits) declaring three submodules in .gitmodules:
    libs/alpha (3 commits), libs/beta (2 commits) and libs/gamma, which is
    missing on disk. Commit times interleave across repositories.
    """
    root = init_repo(tmp_path / "project", author="Root Dev")
    commit_files(root, BASE_TS, {".gitmodules": GITMODULES, "README.md": "# Project\n"}, "initial")
    commit_files(root, BASE_TS + 300, {"README.md": "# Project\n\nDocs\n"}, "docs")
    commit_files(root, BASE_TS + 600, {"main.py": "print('hi')\n"}, "add main")
    commit_files(root, BASE_TS + 900, {"main.py": "print('hello')\n"}, "tweak main")
    commit_files(root, BASE_TS + 1200, {"setup.cfg": "[metadata]\n"}, "packaging")

    alpha = init_repo(root / "libs" / "alpha", author="Alpha Dev")
    commit_files(alpha, BASE_TS + 100, {"a.txt": "one\ntwo\n"}, "alpha start")
    commit_files(alpha, BASE_TS + 400, {"a.txt": "one\nthree\n"}, "alpha edit")
    commit_files(alpha, BASE_TS + 700, {"b.txt": "b\n"}, "alpha more")

    beta = init_repo(root / "libs" / "beta", author="Beta Dev")
    commit_files(beta, BASE_TS + 200, {"x.txt": "x\n"}, "beta start")
    commit_files(beta, BASE_TS + 500, {"x.txt": "x\ny\n"}, "beta grow")

    return root


class FakeBackend(RepositoryBackend):
    """
    In-memory backend. ``repos`` maps directory path -> commit records
    (newest first); ``diffs`` maps commit hash -> changes or an exception.
    """

    def __init__(self, repos=None, submodules=None, diffs=None, broken=()):
        self.repos = {os.path.realpath(str(p)): list(c) for p, c in (repos or {}).items()}
        self.submodules = list(submodules or [])
        self.diffs = dict(diffs or {})
        self.broken = {os.path.realpath(str(p)) for p in broken}
        self.diff_calls = 0

    def is_repository(self, path):
        return os.path.realpath(path) in self.repos

    def head_commit(self, path, timeout=None):
        commits = self.repos.get(os.path.realpath(path))
        return commits[0].commit_hash if commits else None

    def list_submodules(self, root_path):
        return list(self.submodules)

    def submodule_commit(self, root_path, submodule_path):
        return self.head_commit(os.path.join(root_path, submodule_path))

    def iter_commits(self, path, max_count=None, timeout=None):
        key = os.path.realpath(path)
        if key in self.broken:
            raise BackendError(f"corrupt repository at {path}")
        commits = self.repos.get(key, [])
        return iter(commits[:max_count] if max_count else commits)

    def diff_numstat(self, path, commit, timeout=None):
        self.diff_calls += 1
        result = self.diffs.get(commit.commit_hash, [FileChange("f.txt", 1, 0)])
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_layout(tmp_path):
    """
    Directories for a root repository plus libs/alpha and libs/beta, with a
    FakeBackend describing them (2 + 2 + 1 commits).
    """
    root = tmp_path / "fake"
    for sub in ("libs/alpha", "libs/beta"):
        (root / sub).mkdir(parents=True)

    repos = {
        root: [
            CommitRecord("r2", ("r1",), BASE_TS + 20, "Rita", "second"),
            CommitRecord("r1", (), BASE_TS, "Rita", "first"),
        ],
        root / "libs" / "alpha": [
            CommitRecord("a2", ("a1",), BASE_TS + 15, "Ann", "alpha two"),
            CommitRecord("a1", (), BASE_TS + 5, "Ann", "alpha one"),
        ],
        root / "libs" / "beta": [
            CommitRecord("b1", (), BASE_TS + 10, "Ben", "beta one"),
        ],
    }
    submodules = [
        {"name": "alpha", "path": "libs/alpha", "url": "https://example.com/alpha.git"},
        {"name": "beta", "path": "libs/beta", "url": "https://example.com/beta.git"},
    ]
    return root, FakeBackend(repos=repos, submodules=submodules)
