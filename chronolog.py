#!/usr/bin/env python3
"""
Chronolog - unified commit timeline for multi-repository projects (v1.0.0)

Walks the history of a repository and of every submodule it declares,
merges all commits into a single time-ordered timeline and serves that
timeline page by page, resumable from any point in time.

Features:
- Submodule discovery from .gitmodules (the root repository is always included)
- Per-commit diff statistics against the first parent
- Deterministic global ordering, tie-broken on (submodule, commit hash)
- Page-number and timestamp based pagination
- Per-repository timeouts and optional parallel collection
- YAML/JSON configuration files with presets
- JSON export of submodule summaries and browse sessions

Version: 1.0.0
"""

import bisect
import json
import os
import shutil
import subprocess
import sys
import time
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import click
import psutil
import yaml
from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm


# Version information
VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"

DEFAULT_PAGE_SIZE = 10
DEFAULT_ENRICHER = "term_quiz_master"

ROOT_SUBMODULE_NAME = "root"
ROOT_SUBMODULE_PATH = "."
ROOT_SUBMODULE_URL = "local"
UNKNOWN_COMMIT = "unknown"
UNKNOWN_URL = "unknown"

ENTRY_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_OID, "chronolog.log-entry")
EPOCH = datetime.fromtimestamp(0, timezone.utc)


# ============================================================================
# ERRORS
# ============================================================================


class ChronologError(Exception):
    """Base class for timeline errors"""


class DiscoveryError(ChronologError):
    """The root path is not a repository, so there is nothing to aggregate"""


class CollectionError(ChronologError):
    """A single repository could not be walked"""


class BackendError(CollectionError):
    """A git command failed or produced output that could not be parsed"""


class RepositoryTimeout(CollectionError):
    """A repository exceeded its collection time budget"""


# ============================================================================
# CONFIGURATION FILE SUPPORT
# ============================================================================

CONFIG_FILE_NAMES = [
    ".chronolog.yaml",
    ".chronolog.yml",
    ".chronolog.json",
]

PRESETS = {
    "standard": {"page_size": 10},
    "quick": {"page_size": 20, "max_commits": 200, "workers": 4},
    "parallel": {"workers": 8, "timeout": 120.0},
}

# key -> (type, lower bound, bound is exclusive)
NUMERIC_SETTINGS = {
    "page_size": (int, 1, False),
    "workers": (int, 1, False),
    "max_commits": (int, 1, False),
    "timeout": (float, 0.0, True),
    "memory_limit": (float, 0.0, True),
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            return yaml.safe_load(f) or {}
        elif file_ext == ".json":
            return json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")


def find_config_file(repo_path: str) -> Optional[str]:
    """
    Auto-discover a configuration file, first in the repository and then
    in the current directory.
    """
    for search_dir in [repo_path, os.getcwd()]:
        for config_name in CONFIG_FILE_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path

    return None


class ConfigResolver:
    """
    Resolve settings with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        repo_path: str,
        reporter: Optional["ProgressReporter"] = None,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None}
        self.config = {}
        self.config_source = None

        if config_path:
            self.config = load_config_file(config_path)
            self.config_source = config_path
        else:
            auto_path = find_config_file(repo_path)
            if auto_path:
                try:
                    self.config = load_config_file(auto_path)
                    self.config_source = auto_path
                except (OSError, ValueError, yaml.YAMLError) as e:
                    if reporter:
                        reporter.warning(
                            f"Found config file {auto_path} but failed to load it: {e}"
                        )

        if not isinstance(self.config, dict):
            raise ValueError(
                f"Configuration must be a mapping, got {type(self.config).__name__}"
            )

        # kebab-case keys are accepted in config files
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        self.preset_name = preset_name or self.config.get("preset")
        if self.preset_name and self.preset_name not in PRESETS:
            raise ValueError(f"Unknown preset: {self.preset_name}")
        self.preset = PRESETS.get(self.preset_name, {}) if self.preset_name else {}
        self.validated = {}

    def validate(self):
        """
        Coerce the numeric settings to their types and check their bounds
        whatever their source. Raises ValueError naming the offending key.
        """
        for key, (kind, minimum, exclusive) in NUMERIC_SETTINGS.items():
            value = self.get(key)
            if value is None:
                continue

            expected = "an integer" if kind is int else "a number"
            if isinstance(value, bool) or (
                kind is int and isinstance(value, float) and not value.is_integer()
            ):
                raise ValueError(f"{key} must be {expected}, got {value!r}")
            try:
                coerced = kind(value)
            except (TypeError, ValueError):
                raise ValueError(f"{key} must be {expected}, got {value!r}") from None

            if coerced < minimum or (exclusive and coerced == minimum):
                bound = ">" if exclusive else ">="
                raise ValueError(f"{key} must be {bound} {minimum}, got {value!r}")
            self.validated[key] = coerced

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve value based on precedence"""
        if key in self.validated:
            return self.validated[key]
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default


# ============================================================================
# PROGRESS REPORTING
# ============================================================================


class ProgressReporter:
    """
    Console reporting for pipeline stages.

    Colours come from colorama, the per-repository progress bar from tqdm.
    Errors always go to stderr; everything else is silenced by ``quiet``.
    """

    def __init__(
        self, quiet: bool = False, verbose: bool = False, use_colors: bool = True
    ):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.start_time = time.time()
        self.stage_times = {}

    def _colorize(self, text: str, color: str) -> str:
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def stage_start(self, stage_name: str, message: str = ""):
        """Mark the start of a pipeline stage"""
        if self.quiet:
            return
        self.stage_times[stage_name] = time.time()

        header = self._colorize(f"▶ {stage_name}", Fore.BLUE + Style.BRIGHT)
        print(header)
        if message:
            print(f"   {message}")

    def stage_complete(self, stage_name: str, stats: Optional[Dict] = None):
        """Mark completion of a pipeline stage"""
        if self.quiet:
            return
        elapsed = time.time() - self.stage_times.get(stage_name, time.time())

        print(
            self._colorize(
                f"✔ {stage_name} done ({elapsed:.2f}s)", Fore.GREEN + Style.BRIGHT
            )
        )

        if stats and self.verbose:
            for key, value in stats.items():
                print(f"   {key}: {value}")

    def create_progress_bar(
        self, total: int, desc: str = "Collecting", unit: str = " repos"
    ) -> Optional[tqdm]:
        """Progress bar over repositories; None when quiet"""
        if self.quiet:
            return None

        return tqdm(
            total=total,
            desc=self._colorize(desc, Fore.CYAN),
            unit=unit,
            ncols=100,
            leave=False,
        )

    def info(self, message: str):
        if not self.quiet:
            print(f"{self._colorize('•', Fore.BLUE)} {message}")

    def warning(self, message: str):
        if not self.quiet:
            print(self._colorize(f"! {message}", Fore.YELLOW + Style.BRIGHT))

    def error(self, message: str):
        """Display error message (always shown)"""
        print(
            self._colorize(f"ERROR: {message}", Fore.RED + Style.BRIGHT),
            file=sys.stderr,
        )

    def success(self, message: str):
        if not self.quiet:
            print(self._colorize(message, Fore.GREEN + Style.BRIGHT))

    def summary(self, title: str, stats: Dict[str, Any]):
        """Display a titled block of key/value statistics"""
        if self.quiet:
            return
        elapsed = time.time() - self.start_time

        separator = self._colorize("-" * 60, Fore.CYAN)
        print(separator)
        print(self._colorize(title, Fore.MAGENTA + Style.BRIGHT))
        for key, value in stats.items():
            print(f"   {key}: {value}")
        print(self._colorize(f"   elapsed: {elapsed:.2f}s", Fore.YELLOW))
        print(separator)


# ============================================================================
# RESOURCE MONITORING
# ============================================================================


class MemoryMonitor:
    """Sample resident memory and enforce an optional limit"""

    def __init__(self, limit_mb: Optional[float] = None):
        self.limit_mb = limit_mb
        self.peak_mb = 0.0

    def check_memory(self) -> float:
        """Current RSS in MB; raises MemoryError past the limit"""
        process = psutil.Process(os.getpid())
        memory_mb = process.memory_info().rss / 1024 / 1024
        self.peak_mb = max(self.peak_mb, memory_mb)

        if self.limit_mb and memory_mb > self.limit_mb:
            raise MemoryError(
                f"Memory limit exceeded: {memory_mb:.1f}MB > {self.limit_mb}MB"
            )

        return memory_mb

    def get_peak(self) -> float:
        return self.peak_mb


@dataclass
class RunMetrics:
    """Counters for one aggregation run"""

    repositories_discovered: int = 0
    repositories_collected: int = 0
    repositories_skipped: int = 0
    commits_collected: int = 0
    diff_failures: int = 0
    memory_peak_mb: float = 0.0
    total_time: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "repositories_discovered": self.repositories_discovered,
            "repositories_collected": self.repositories_collected,
            "repositories_skipped": self.repositories_skipped,
            "commits_collected": self.commits_collected,
            "diff_failures": self.diff_failures,
            "memory_peak_mb": round(self.memory_peak_mb, 2),
            "total_time_seconds": round(self.total_time, 2),
        }


# ============================================================================
# DATA MODEL
# ============================================================================


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(text: str) -> datetime:
    """
    Parse an ISO 8601 timestamp, or unix seconds written as ``@1700000000``,
    into an aware UTC datetime. Accepts ``Z`` and ``+0000`` style offsets.
    """
    text = text.strip()
    if text.startswith("@"):
        seconds = text[1:]
        if not seconds.isdigit():
            raise ValueError(f"Invalid unix timestamp: {text!r}")
        return datetime.fromtimestamp(int(seconds), timezone.utc)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    elif len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    return to_utc(datetime.fromisoformat(text))


def make_entry_id(submodule_path: str, commit_hash: str) -> str:
    """Stable id, so re-collecting the same history yields identical entries"""
    return str(uuid.uuid5(ENTRY_ID_NAMESPACE, f"{submodule_path}\x00{commit_hash}"))


@dataclass(frozen=True)
class SubmoduleInfo:
    """One repository taking part in the aggregation"""

    name: str
    path: str
    url: str
    commit_hash: str
    last_updated: datetime

    @property
    def is_root(self) -> bool:
        return self.path == ROOT_SUBMODULE_PATH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "url": self.url,
            "commit_hash": self.commit_hash,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class DiffStats:
    insertions: int = 0
    deletions: int = 0
    files_changed_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "insertions": self.insertions,
            "deletions": self.deletions,
            "files_changed_count": self.files_changed_count,
        }


@dataclass(frozen=True)
class LogEntry:
    """A single commit of a single repository, normalized"""

    id: str
    timestamp: datetime
    commit_hash: str
    author: str
    message: str
    submodule_path: str
    files_changed: Tuple[str, ...] = ()
    diff_stats: DiffStats = field(default_factory=DiffStats)

    @property
    def sort_key(self) -> Tuple[datetime, str, str]:
        return (self.timestamp, self.submodule_path, self.commit_hash)

    @property
    def short_hash(self) -> str:
        return self.commit_hash[:8]

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "commit_hash": self.commit_hash,
            "author": self.author,
            "message": self.message,
            "submodule_path": self.submodule_path,
            "files_changed": list(self.files_changed),
            "diff_stats": self.diff_stats.to_dict(),
        }


@dataclass(frozen=True)
class PageNavigation:
    previous_timestamp: Optional[datetime]
    next_timestamp: Optional[datetime]
    can_go_back: bool
    can_continue: bool
    bookmark_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_timestamp": (
                self.previous_timestamp.isoformat() if self.previous_timestamp else None
            ),
            "next_timestamp": (
                self.next_timestamp.isoformat() if self.next_timestamp else None
            ),
            "can_go_back": self.can_go_back,
            "can_continue": self.can_continue,
            "bookmark_id": self.bookmark_id,
        }


@dataclass(frozen=True)
class PageMetadata:
    total_entries: int
    page_size: int
    start_index: int
    end_index: int
    submodule_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "page_size": self.page_size,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "submodule_counts": dict(self.submodule_counts),
        }


@dataclass(frozen=True)
class Page:
    """One window of the timeline. Built on demand, never stored."""

    page_number: int
    total_pages: int
    items: Tuple[LogEntry, ...]
    timestamp_range: Optional[Tuple[datetime, datetime]]
    navigation: PageNavigation
    metadata: PageMetadata

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "total_pages": self.total_pages,
            "items": [entry.to_dict() for entry in self.items],
            "timestamp_range": (
                [t.isoformat() for t in self.timestamp_range]
                if self.timestamp_range
                else None
            ),
            "navigation": self.navigation.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


# ============================================================================
# REPOSITORY BACKEND
# ============================================================================


@dataclass(frozen=True)
class CommitRecord:
    """Raw commit data as read from the backend"""

    commit_hash: str
    parents: Tuple[str, ...] = ()
    commit_time: Optional[int] = None
    author_name: str = ""
    message: str = ""


@dataclass(frozen=True)
class FileChange:
    file_path: str
    lines_added: int = 0
    lines_deleted: int = 0


class RepositoryBackend(ABC):
    """Commit traversal, tree diffing and submodule enumeration for one path"""

    @abstractmethod
    def is_repository(self, path: str) -> bool:
        """True when ``path`` is the top level of a working tree"""

    @abstractmethod
    def head_commit(self, path: str, timeout: Optional[float] = None) -> Optional[str]:
        """Hash of HEAD, or None for an unborn branch"""

    @abstractmethod
    def list_submodules(self, root_path: str) -> List[Dict[str, str]]:
        """Declared submodules as ``{"name", "path", "url"}`` in declaration order"""

    @abstractmethod
    def submodule_commit(self, root_path: str, submodule_path: str) -> Optional[str]:
        """Commit currently checked out for a submodule, if resolvable"""

    @abstractmethod
    def iter_commits(
        self,
        path: str,
        max_count: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Iterator[CommitRecord]:
        """Commits reachable from HEAD, newest commit time first"""

    @abstractmethod
    def diff_numstat(
        self, path: str, commit: CommitRecord, timeout: Optional[float] = None
    ) -> List[FileChange]:
        """Per-file line changes against the first parent (empty tree for roots)"""


# git log output: fields split by US, records terminated by RS
LOG_FIELD_SEP = "\x1f"
LOG_RECORD_SEP = "\x1e"
LOG_FORMAT = "%H%x1f%P%x1f%ct%x1f%an%x1f%B%x1e"


def _same_path(a: str, b: str) -> bool:
    return os.path.normcase(os.path.realpath(a)) == os.path.normcase(
        os.path.realpath(b)
    )


class GitCommandBackend(RepositoryBackend):
    """RepositoryBackend that shells out to the git executable"""

    def __init__(self, git_executable: str = "git"):
        self.git = git_executable

    def _run(
        self,
        path: str,
        *args: str,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        cmd = [self.git, "-C", path] + list(args)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise BackendError(f"git executable not found: {self.git}") from e
        except subprocess.TimeoutExpired as e:
            raise RepositoryTimeout(
                f"git {args[0]} timed out after {timeout:.1f}s in {path}"
            ) from e

        if check and result.returncode != 0:
            raise BackendError(
                f"git {args[0]} failed in {path}: {result.stderr.strip()}"
            )
        return result

    def is_repository(self, path: str) -> bool:
        if not os.path.isdir(path):
            return False
        result = self._run(path, "rev-parse", "--show-toplevel", check=False)
        if result.returncode != 0:
            return False
        # An uninitialised submodule directory resolves to the superproject
        return _same_path(result.stdout.strip(), path)

    def head_commit(self, path: str, timeout: Optional[float] = None) -> Optional[str]:
        result = self._run(
            path, "rev-parse", "--verify", "-q", "HEAD^{commit}",
            timeout=timeout, check=False,
        )
        head = result.stdout.strip()
        return head if result.returncode == 0 and head else None

    def list_submodules(self, root_path: str) -> List[Dict[str, str]]:
        if not os.path.isfile(os.path.join(root_path, ".gitmodules")):
            return []

        result = self._run(
            root_path,
            "config", "-z", "--file", ".gitmodules",
            "--get-regexp", r"^submodule\..*\.(path|url)$",
            check=False,
        )
        # exit status 1 means no matching keys
        if result.returncode not in (0, 1):
            raise BackendError(f"Cannot read .gitmodules: {result.stderr.strip()}")

        declared = {}
        for record in result.stdout.split("\0"):
            if not record:
                continue
            key, _, value = record.partition("\n")
            name, _, attr = key[len("submodule."):].rpartition(".")
            declared.setdefault(name, {})[attr] = value

        return [
            {
                "name": name,
                "path": attrs.get("path") or name,
                "url": attrs.get("url", ""),
            }
            for name, attrs in declared.items()
        ]

    def submodule_commit(self, root_path: str, submodule_path: str) -> Optional[str]:
        checkout = os.path.join(root_path, submodule_path)
        if self.is_repository(checkout):
            head = self.head_commit(checkout)
            if head:
                return head

        # Not checked out: use the gitlink recorded in the superproject
        result = self._run(
            root_path, "ls-tree", "HEAD", "--", submodule_path, check=False
        )
        for line in result.stdout.splitlines():
            meta = line.partition("\t")[0].split()
            if len(meta) == 3 and meta[1] == "commit":
                return meta[2]
        return None

    def iter_commits(
        self,
        path: str,
        max_count: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Iterator[CommitRecord]:
        if self.head_commit(path, timeout=timeout) is None:
            return

        args = ["log", "HEAD", "--date-order", "--encoding=UTF-8", f"--format={LOG_FORMAT}"]
        if max_count:
            args.append(f"--max-count={max_count}")
        result = self._run(path, *args, timeout=timeout)

        for record in result.stdout.split(LOG_RECORD_SEP):
            record = record.lstrip("\n")
            if not record:
                continue
            yield self._parse_commit_record(record)

    def _parse_commit_record(self, record: str) -> CommitRecord:
        parts = record.split(LOG_FIELD_SEP, 4)
        commit_hash = parts[0].strip()
        if not commit_hash:
            raise BackendError(f"Malformed git log record: {record[:50]!r}")

        try:
            commit_time = int(parts[2])
        except (IndexError, ValueError):
            commit_time = None

        return CommitRecord(
            commit_hash=commit_hash,
            parents=tuple(parts[1].split()) if len(parts) > 1 else (),
            commit_time=commit_time,
            author_name=parts[3] if len(parts) > 3 else "",
            message=parts[4].rstrip("\n") if len(parts) > 4 else "",
        )

    def diff_numstat(
        self, path: str, commit: CommitRecord, timeout: Optional[float] = None
    ) -> List[FileChange]:
        args = ["diff-tree", "-r", "-z", "--numstat", "--no-renames", "--no-commit-id"]
        if commit.parents:
            args += [commit.parents[0], commit.commit_hash]
        else:
            args += ["--root", commit.commit_hash]
        result = self._run(path, *args, timeout=timeout)
        return self._parse_numstat(result.stdout)

    def _parse_numstat(self, output: str) -> List[FileChange]:
        """
        Parse ``diff-tree -z --numstat`` output: ``added<TAB>deleted<TAB>path<NUL>``.
        Binary files report ``-`` for both counts and are counted as 0/0.
        """
        changes = []
        for record in output.split("\0"):
            record = record.strip("\n")
            if not record:
                continue
            parts = record.split("\t", 2)
            if len(parts) != 3:
                raise BackendError(f"Malformed numstat record: {record[:50]!r}")
            added, deleted, file_path = parts
            try:
                changes.append(
                    FileChange(
                        file_path=file_path,
                        lines_added=int(added) if added != "-" else 0,
                        lines_deleted=int(deleted) if deleted != "-" else 0,
                    )
                )
            except ValueError as e:
                raise BackendError(f"Malformed numstat record: {record[:50]!r}") from e
        return changes


# ============================================================================
# SUBMODULE DISCOVERY
# ============================================================================


class SubmoduleDiscoverer:
    """
    Enumerates the repositories to aggregate: every submodule declared in
    .gitmodules, in declaration order, followed by the root repository.

    Discovery is total over the declared set. A submodule whose commit cannot
    be resolved is kept with the ``unknown`` sentinel hash.
    """

    def __init__(
        self,
        backend: Optional[RepositoryBackend] = None,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.backend = backend or GitCommandBackend()
        self.reporter = reporter or ProgressReporter(quiet=True)

    def discover(self, root_path: str) -> List[SubmoduleInfo]:
        root_path = os.path.abspath(root_path)
        try:
            is_repo = self.backend.is_repository(root_path)
        except CollectionError as e:
            raise DiscoveryError(str(e)) from e
        if not is_repo:
            raise DiscoveryError(f"Not a git repository: {root_path}")

        discovered_at = datetime.now(timezone.utc)

        try:
            declared = self.backend.list_submodules(root_path)
        except BackendError as e:
            self.reporter.warning(f"Ignoring unreadable .gitmodules: {e}")
            declared = []

        submodules = []
        for decl in declared:
            try:
                commit_hash = self.backend.submodule_commit(root_path, decl["path"])
            except CollectionError as e:
                self.reporter.warning(f"Cannot resolve commit of {decl['name']}: {e}")
                commit_hash = None

            submodules.append(
                SubmoduleInfo(
                    name=decl["name"],
                    path=decl["path"],
                    url=decl.get("url") or UNKNOWN_URL,
                    commit_hash=commit_hash or UNKNOWN_COMMIT,
                    last_updated=discovered_at,
                )
            )
            if self.reporter.verbose:
                self.reporter.info(f"Found submodule {decl['name']} at {decl['path']}")

        submodules.append(
            SubmoduleInfo(
                name=ROOT_SUBMODULE_NAME,
                path=ROOT_SUBMODULE_PATH,
                url=ROOT_SUBMODULE_URL,
                commit_hash=self.backend.head_commit(root_path) or UNKNOWN_COMMIT,
                last_updated=discovered_at,
            )
        )
        return submodules


# ============================================================================
# LOG COLLECTION
# ============================================================================


class LogCollector:
    """
    Walks one repository's history and turns every commit into a LogEntry.

    Entries come out in the backend's traversal order. A failed diff keeps the
    commit with empty DiffStats; a repository that cannot be opened raises
    CollectionError. With ``timeout`` set, all backend calls for one
    repository share a single deadline.
    """

    def __init__(
        self,
        backend: Optional[RepositoryBackend] = None,
        max_commits: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.backend = backend or GitCommandBackend()
        self.max_commits = max_commits
        self.timeout = timeout
        self.errors = []
        self.diff_failures = 0

    def _remaining(self, deadline: Optional[float], repo_path: str) -> Optional[float]:
        if deadline is None:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RepositoryTimeout(
                f"Collection exceeded {self.timeout}s for {repo_path}"
            )
        return remaining

    def collect(self, repo_path: str, label: str) -> List[LogEntry]:
        if not os.path.isdir(repo_path):
            raise CollectionError(f"Repository path does not exist: {repo_path}")
        if not self.backend.is_repository(repo_path):
            raise CollectionError(f"Not a git repository: {repo_path}")

        deadline = time.monotonic() + self.timeout if self.timeout else None

        commits = self.backend.iter_commits(
            repo_path,
            max_count=self.max_commits,
            timeout=self._remaining(deadline, repo_path),
        )
        return [
            self._create_entry(repo_path, commit, label, deadline)
            for commit in commits
        ]

    def _create_entry(
        self,
        repo_path: str,
        commit: CommitRecord,
        label: str,
        deadline: Optional[float],
    ) -> LogEntry:
        if commit.commit_time is None:
            self.errors.append(
                f"{label}: commit {commit.commit_hash[:8]} has no readable commit time"
            )
            timestamp = EPOCH
        else:
            timestamp = datetime.fromtimestamp(commit.commit_time, timezone.utc)

        try:
            changes = self.backend.diff_numstat(
                repo_path, commit, timeout=self._remaining(deadline, repo_path)
            )
        except RepositoryTimeout:
            raise
        except BackendError as e:
            self.diff_failures += 1
            self.errors.append(f"{label}: diff failed for {commit.commit_hash[:8]}: {e}")
            changes = None

        if changes is None:
            diff_stats = DiffStats()
            files_changed = ()
        else:
            diff_stats = DiffStats(
                insertions=sum(c.lines_added for c in changes),
                deletions=sum(c.lines_deleted for c in changes),
                files_changed_count=len(changes),
            )
            files_changed = tuple(c.file_path for c in changes)

        return LogEntry(
            id=make_entry_id(label, commit.commit_hash),
            timestamp=timestamp,
            commit_hash=commit.commit_hash,
            author=commit.author_name or "",
            message=commit.message or "",
            submodule_path=label,
            files_changed=files_changed,
            diff_stats=diff_stats,
        )


# ============================================================================
# AGGREGATION
# ============================================================================


@dataclass(frozen=True)
class SkippedRepository:
    name: str
    path: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "path": self.path, "reason": self.reason}


@dataclass
class AggregationResult:
    """Unordered entries from every repository plus what was left out"""

    entries: List[LogEntry] = field(default_factory=list)
    collected: Dict[str, int] = field(default_factory=dict)
    skipped: List[SkippedRepository] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    diff_failures: int = 0

    @property
    def root_collected(self) -> bool:
        return ROOT_SUBMODULE_PATH in self.collected

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


@dataclass
class _RepositoryOutcome:
    submodule: SubmoduleInfo
    entries: List[LogEntry] = field(default_factory=list)
    failure: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    diff_failures: int = 0


class Aggregator:
    """
    Runs a LogCollector for every discovered repository and concatenates
    the results in discovery order.

    Missing paths and failed collections are skipped with a warning. With
    ``workers > 1`` repositories are collected on a thread pool; the merge
    still follows discovery order.
    """

    def __init__(
        self,
        backend: Optional[RepositoryBackend] = None,
        reporter: Optional[ProgressReporter] = None,
        workers: int = 1,
        timeout: Optional[float] = None,
        max_commits: Optional[int] = None,
        memory_monitor: Optional[MemoryMonitor] = None,
    ):
        self.backend = backend or GitCommandBackend()
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.workers = max(1, workers or 1)
        self.timeout = timeout
        self.max_commits = max_commits
        self.memory_monitor = memory_monitor or MemoryMonitor()

    def _collect_one(self, root_path: str, submodule: SubmoduleInfo) -> _RepositoryOutcome:
        outcome = _RepositoryOutcome(submodule=submodule)
        repo_path = os.path.normpath(os.path.join(root_path, submodule.path))

        if not os.path.exists(repo_path):
            outcome.failure = f"path does not exist: {repo_path}"
            return outcome

        collector = LogCollector(
            self.backend, max_commits=self.max_commits, timeout=self.timeout
        )
        try:
            outcome.entries = collector.collect(repo_path, submodule.path)
        except CollectionError as e:
            outcome.failure = str(e)
        except (OSError, UnicodeError) as e:
            outcome.failure = f"{type(e).__name__}: {e}"

        outcome.errors = collector.errors
        outcome.diff_failures = collector.diff_failures
        return outcome

    def aggregate(
        self, root_path: str, submodules: List[SubmoduleInfo]
    ) -> AggregationResult:
        root_path = os.path.abspath(root_path)
        progress_bar = self.reporter.create_progress_bar(
            total=len(submodules), desc="Collecting logs"
        )
        outcomes = []

        try:
            if self.workers > 1 and len(submodules) > 1:
                with ThreadPoolExecutor(max_workers=self.workers) as pool:
                    futures = [
                        pool.submit(self._collect_one, root_path, sub)
                        for sub in submodules
                    ]
                    for future in futures:
                        outcomes.append(future.result())
                        self._tick(progress_bar)
            else:
                for sub in submodules:
                    outcomes.append(self._collect_one(root_path, sub))
                    self._tick(progress_bar)
        finally:
            if progress_bar:
                progress_bar.close()

        result = AggregationResult()
        for outcome in outcomes:
            sub = outcome.submodule
            result.errors.extend(outcome.errors)
            result.diff_failures += outcome.diff_failures

            if outcome.failure:
                self.reporter.warning(f"Skipping {sub.name}: {outcome.failure}")
                result.skipped.append(SkippedRepository(sub.name, sub.path, outcome.failure))
                result.errors.append(f"{sub.name}: {outcome.failure}")
                continue

            result.entries.extend(outcome.entries)
            result.collected[sub.path] = len(outcome.entries)
            if self.reporter.verbose:
                self.reporter.info(f"Collected {len(outcome.entries):,} commits from {sub.name}")

        if not result.root_collected:
            self.reporter.warning("Root repository logs could not be collected")

        return result

    def _tick(self, progress_bar: Optional[tqdm]):
        if progress_bar:
            progress_bar.update(1)
        self.memory_monitor.check_memory()


# ============================================================================
# TIMESTAMP INDEX
# ============================================================================


def index_key(entry: LogEntry) -> Tuple[datetime, str, str]:
    return entry.sort_key


class TimestampIndex:
    """
    Immutable, globally ordered view over an aggregated collection.

    Entries are sorted by ``(timestamp, submodule_path, commit_hash)`` so that
    commits sharing a timestamp are all kept, in a fixed order. Each
    construction is a full rebuild.
    """

    def __init__(self, entries: Iterable[LogEntry] = ()):
        self._entries = tuple(sorted(entries, key=index_key))
        self._timestamps = [entry.timestamp for entry in self._entries]

    @classmethod
    def from_result(cls, result: AggregationResult) -> "TimestampIndex":
        return cls(result.entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    def __getitem__(self, item):
        return self._entries[item]

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return self._entries

    def position_at_or_after(self, timestamp: datetime) -> int:
        """Index of the first entry with timestamp >= ``timestamp`` (len() if none)"""
        return bisect.bisect_left(self._timestamps, to_utc(timestamp))

    def first_at_or_after(self, timestamp: datetime) -> Optional[LogEntry]:
        position = self.position_at_or_after(timestamp)
        if position < len(self._entries):
            return self._entries[position]
        return None

    def timestamp_range(self) -> Optional[Tuple[datetime, datetime]]:
        if not self._entries:
            return None
        return (self._timestamps[0], self._timestamps[-1])

    def submodule_counts(self) -> Dict[str, int]:
        counts = Counter(entry.submodule_path for entry in self._entries)
        return dict(sorted(counts.items()))


# ============================================================================
# PAGINATION
# ============================================================================


class Paginator:
    """
    Fixed-size, 1-based pages over a TimestampIndex.

    Both operations are pure functions of the index and the request.
    """

    def __init__(self, index: TimestampIndex, page_size: int = DEFAULT_PAGE_SIZE):
        self.index = index
        self.page_size = self._check_size(page_size)

    @staticmethod
    def _check_size(page_size: int) -> int:
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        return page_size

    def _size(self, page_size: Optional[int]) -> int:
        return self.page_size if page_size is None else self._check_size(page_size)

    def total_pages(self, page_size: Optional[int] = None) -> int:
        size = self._size(page_size)
        return (len(self.index) + size - 1) // size

    def paginate(self, page_number: int, page_size: Optional[int] = None) -> Page:
        """Page ``page_number``; past the end this is an empty page."""
        if page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {page_number}")
        size = self._size(page_size)
        total = len(self.index)

        start = (page_number - 1) * size
        end = min(start + size, total)
        items = tuple(self.index[start:end])

        timestamp_range = (items[0].timestamp, items[-1].timestamp) if items else None

        previous_timestamp = None
        if page_number > 1 and 0 < start <= total:
            previous_timestamp = self.index[start - 1].timestamp
        next_timestamp = self.index[end].timestamp if end < total else None

        navigation = PageNavigation(
            previous_timestamp=previous_timestamp,
            next_timestamp=next_timestamp,
            can_go_back=page_number > 1,
            can_continue=end < total,
            bookmark_id=items[0].id if items else None,
        )

        counts = Counter(entry.submodule_path for entry in items)
        metadata = PageMetadata(
            total_entries=total,
            page_size=size,
            start_index=min(start, total),
            end_index=end,
            submodule_counts=dict(sorted(counts.items())),
        )

        return Page(
            page_number=page_number,
            total_pages=self.total_pages(size),
            items=items,
            timestamp_range=timestamp_range,
            navigation=navigation,
            metadata=metadata,
        )

    def page_number_for(self, timestamp: datetime, page_size: Optional[int] = None) -> int:
        """
        Page holding the first entry at or after ``timestamp``. When every
        entry is older, the last page.
        """
        size = self._size(page_size)
        total = len(self.index)
        if total == 0:
            return 1
        position = min(self.index.position_at_or_after(timestamp), total - 1)
        return position // size + 1

    def continue_from_timestamp(
        self, timestamp: datetime, page_size: Optional[int] = None
    ) -> Page:
        size = self._size(page_size)
        return self.paginate(self.page_number_for(timestamp, size), size)


# ============================================================================
# ENRICHMENT
# ============================================================================


class Enricher(ABC):
    """
    Optional per-entry annotation capability.

    Annotations live beside the timeline: they never change the index or
    the pages they were computed from.
    """

    @property
    @abstractmethod
    def available(self) -> bool:
        ...

    @abstractmethod
    def annotate(self, entry: LogEntry) -> Optional[Any]:
        ...


class UnavailableEnricher(Enricher):
    @property
    def available(self) -> bool:
        return False

    def annotate(self, entry: LogEntry) -> Optional[Any]:
        return None


class CommandEnricher(Enricher):
    """Annotates commit messages with an external analysis executable"""

    def __init__(self, executable: str = DEFAULT_ENRICHER, timeout: float = 30.0):
        self.executable = executable
        self.resolved_path = shutil.which(executable)
        self.timeout = timeout
        self.errors = []

    @property
    def available(self) -> bool:
        return self.resolved_path is not None

    def annotate(self, entry: LogEntry) -> Optional[Any]:
        if not self.available:
            return None

        cmd = [
            self.resolved_path,
            "--analyze",
            "--input",
            entry.message,
            "--format",
            "json",
        ]
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout, check=True
            )
            return json.loads(result.stdout)
        except (OSError, subprocess.SubprocessError, json.JSONDecodeError) as e:
            self.errors.append(f"{self.executable} failed on {entry.short_hash}: {e}")
            return None


def detect_enricher(executable: str = DEFAULT_ENRICHER) -> Enricher:
    """CommandEnricher when ``executable`` is on PATH, otherwise UnavailableEnricher"""
    enricher = CommandEnricher(executable)
    if enricher.available:
        return enricher
    return UnavailableEnricher()


def annotate_page(page: Page, enricher: Enricher) -> Dict[str, Any]:
    """Map of entry id -> annotation for the entries the enricher could handle"""
    annotations = {}
    if not enricher.available:
        return annotations
    for entry in page.items:
        annotation = enricher.annotate(entry)
        if annotation is not None:
            annotations[entry.id] = annotation
    return annotations


# ============================================================================
# PIPELINE
# ============================================================================


@dataclass
class AggregationRun:
    """Everything one run produced: discovery, collection and the index"""

    repo_path: str
    submodules: List[SubmoduleInfo]
    result: AggregationResult
    index: TimestampIndex
    metrics: RunMetrics

    def paginator(self, page_size: int = DEFAULT_PAGE_SIZE) -> Paginator:
        return Paginator(self.index, page_size)


def build_timeline(
    repo_path: str,
    backend: Optional[RepositoryBackend] = None,
    reporter: Optional[ProgressReporter] = None,
    workers: int = 1,
    timeout: Optional[float] = None,
    max_commits: Optional[int] = None,
    memory_limit_mb: Optional[float] = None,
) -> AggregationRun:
    """
    Discover, collect, aggregate and index. Raises DiscoveryError when
    ``repo_path`` is not a repository; every other failure is partial.
    """
    start_time = time.time()
    repo_path = os.path.abspath(repo_path)
    backend = backend or GitCommandBackend()
    reporter = reporter or ProgressReporter(quiet=True)
    memory_monitor = MemoryMonitor(limit_mb=memory_limit_mb)

    reporter.stage_start("Discovery", f"Scanning {repo_path} for submodules...")
    submodules = SubmoduleDiscoverer(backend, reporter).discover(repo_path)
    reporter.stage_complete(
        "Discovery", {"Repositories": f"{len(submodules)} (including root)"}
    )

    reporter.stage_start("Collection", "Walking commit histories...")
    aggregator = Aggregator(
        backend,
        reporter,
        workers=workers,
        timeout=timeout,
        max_commits=max_commits,
        memory_monitor=memory_monitor,
    )
    result = aggregator.aggregate(repo_path, submodules)
    reporter.stage_complete(
        "Collection",
        {
            "Commits collected": f"{len(result.entries):,}",
            "Repositories skipped": result.skipped_count,
            "Diff failures": result.diff_failures,
        },
    )

    reporter.stage_start("Indexing", "Ordering commits by timestamp...")
    index = TimestampIndex.from_result(result)
    reporter.stage_complete("Indexing", {"Entries": f"{len(index):,}"})

    metrics = RunMetrics(
        repositories_discovered=len(submodules),
        repositories_collected=len(result.collected),
        repositories_skipped=result.skipped_count,
        commits_collected=len(result.entries),
        diff_failures=result.diff_failures,
        memory_peak_mb=memory_monitor.get_peak(),
        total_time=time.time() - start_time,
    )

    return AggregationRun(
        repo_path=repo_path,
        submodules=submodules,
        result=result,
        index=index,
        metrics=metrics,
    )


# ============================================================================
# EXPORT
# ============================================================================


def write_json(data: Any, output_path: str) -> str:
    """Write ``data`` as pretty UTF-8 JSON, creating parent directories"""
    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return output_path


def build_submodule_summary(run: AggregationRun) -> Dict[str, Any]:
    """Per-submodule commit counts for a completed run"""
    counts = run.index.submodule_counts()
    return {
        "schema_version": SCHEMA_VERSION,
        "generator_version": VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "repository": run.repo_path,
        "total_commits": len(run.index),
        "submodules": [
            dict(sub.to_dict(), commit_count=counts.get(sub.path, 0))
            for sub in run.submodules
        ],
        "skipped": [s.to_dict() for s in run.result.skipped],
        "metrics": run.metrics.to_dict(),
    }


def export_submodule_summary(run: AggregationRun, output_path: str) -> str:
    return write_json(build_submodule_summary(run), output_path)


@dataclass
class BrowseSession:
    """Pages visited during one browse session, kept for later replay"""

    repository: str
    page_size: int
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    resumed_from: Optional[datetime] = None
    pages: List[Dict[str, Any]] = field(default_factory=list)

    def record_page(self, page: Page, annotations: Optional[Dict[str, Any]] = None):
        self.pages.append(
            {
                "page": page.to_dict(),
                "annotations": dict(annotations or {}),
            }
        )

    def finish(self):
        self.finished_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "session_id": self.session_id,
            "repository": self.repository,
            "page_size": self.page_size,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "resumed_from": self.resumed_from.isoformat() if self.resumed_from else None,
            "pages_viewed": len(self.pages),
            "pages": self.pages,
        }


def export_session(session: BrowseSession, output_dir: str) -> str:
    output_path = os.path.join(output_dir, f"session_{session.session_id}.json")
    return write_json(session.to_dict(), output_path)


# ============================================================================
# CLI INTERFACE
# ============================================================================


@dataclass
class CLIState:
    repo_path: str
    resolver: ConfigResolver
    reporter: ProgressReporter

    def get(self, key: str, default: Any = None) -> Any:
        return self.resolver.get(key, default)

    def page_size(self, override: Optional[int]) -> int:
        return override or self.get("page_size", DEFAULT_PAGE_SIZE)


def _load_run(state: CLIState) -> AggregationRun:
    try:
        run = build_timeline(
            state.repo_path,
            reporter=state.reporter,
            workers=state.get("workers", 1),
            timeout=state.get("timeout"),
            max_commits=state.get("max_commits"),
            memory_limit_mb=state.get("memory_limit"),
        )
    except DiscoveryError as e:
        state.reporter.error(str(e))
        sys.exit(1)
    except MemoryError as e:
        state.reporter.error(f"Aggregation aborted: {e}")
        sys.exit(1)

    if run.result.skipped:
        state.reporter.warning(
            f"{run.result.skipped_count} repositories skipped; results are partial"
        )
    return run


def _enricher_for(state: CLIState, enrich: Optional[bool]) -> Enricher:
    wanted = enrich if enrich is not None else state.get("enrich", False)
    if not wanted:
        return UnavailableEnricher()
    enricher = detect_enricher(state.get("enricher", DEFAULT_ENRICHER))
    if not enricher.available:
        state.reporter.warning("Enrichment tool not found; continuing without annotations")
    return enricher


def format_entry(position: int, entry: LogEntry, width: int = 80) -> str:
    return (
        f"  {position}. [{entry.submodule_path}] "
        f"{entry.timestamp:%Y-%m-%d %H:%M} {entry.short_hash} "
        f"{entry.author} - {entry.subject[:width]}"
    )


def _echo_page(page: Page, annotations: Optional[Dict[str, Any]] = None):
    click.echo(f"Page {page.page_number} of {page.total_pages} ({len(page.items)} entries)")
    if page.timestamp_range:
        start, end = page.timestamp_range
        click.echo(f"  Time range: {start:%Y-%m-%d %H:%M} to {end:%Y-%m-%d %H:%M}")
    click.echo(
        "  Navigation: "
        f"{'<- previous' if page.navigation.can_go_back else '(start)'} | "
        f"{'next ->' if page.navigation.can_continue else '(end)'}"
    )
    for position, entry in enumerate(page.items, 1):
        click.echo(format_entry(position, entry))
        if annotations and entry.id in annotations:
            click.echo(f"     annotation: {json.dumps(annotations[entry.id], ensure_ascii=False)}")


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "-r",
    "--repo-path",
    type=click.Path(file_okay=False, resolve_path=True),
    default=".",
    show_default=True,
    help="Root repository to aggregate",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Use predefined settings",
)
@click.option("--workers", type=click.IntRange(min=1), help="Repositories collected in parallel")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Per-repository collection timeout in seconds",
)
@click.option("--max-commits", type=click.IntRange(min=1), help="Commits read per repository")
@click.option(
    "--memory-limit", type=click.FloatRange(min=0, min_open=True), help="Memory limit in MB"
)
@click.option("-q", "--quiet", is_flag=True, default=None, help="Suppress progress output")
@click.option("-v", "--verbose", is_flag=True, default=None, help="Show stage statistics")
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.version_option(version=VERSION)
@click.pass_context
def main(ctx, repo_path, config, preset, **kwargs):
    """
    Chronolog - one timeline for a repository and all of its submodules.
    """
    colorama_init(autoreset=True)
    bootstrap = ProgressReporter(
        quiet=bool(kwargs.get("quiet")), use_colors=not kwargs.get("no_color")
    )
    try:
        resolver = ConfigResolver(kwargs, config, preset, repo_path, reporter=bootstrap)
        resolver.validate()
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e

    reporter = ProgressReporter(
        quiet=resolver.get("quiet", False),
        verbose=resolver.get("verbose", False),
        use_colors=not resolver.get("no_color", False),
    )
    if resolver.config_source:
        reporter.info(f"Using configuration: {resolver.config_source}")

    ctx.obj = CLIState(repo_path=repo_path, resolver=resolver, reporter=reporter)


@main.command("collect")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False),
    help="Write the per-submodule summary as JSON",
)
@click.pass_obj
def collect_command(state: CLIState, output):
    """Collect logs from every submodule and show per-submodule counts."""
    run = _load_run(state)

    click.echo(f"Collected {len(run.index):,} log entries")
    click.echo("Submodule statistics:")
    for submodule_path, count in run.index.submodule_counts().items():
        click.echo(f"  {submodule_path}: {count} commits")
    for skipped in run.result.skipped:
        click.echo(f"  {skipped.path}: skipped ({skipped.reason})")

    if output:
        export_submodule_summary(run, output)
        state.reporter.success(f"Summary written to {output}")

    state.reporter.summary(
        "Aggregation summary",
        {
            "Repository": run.repo_path,
            "Repositories": len(run.submodules),
            "Skipped": run.result.skipped_count,
            "Commits": f"{len(run.index):,}",
        },
    )


@main.command("page")
@click.option("-p", "--page", "page_number", type=click.IntRange(min=1), required=True)
@click.option("-s", "--size", type=click.IntRange(min=1), help="Entries per page")
@click.option("--enrich/--no-enrich", default=None, help="Annotate entries with the enrichment tool")
@click.pass_obj
def page_command(state: CLIState, page_number, size, enrich):
    """Show one page of the merged timeline."""
    run = _load_run(state)
    page = run.paginator(state.page_size(size)).paginate(page_number)

    if page.is_empty:
        click.echo(f"Page {page_number} is past the end ({page.total_pages} pages)")
        return
    _echo_page(page, annotate_page(page, _enricher_for(state, enrich)))


@main.command("continue-from")
@click.option("-t", "--timestamp", required=True, help="ISO 8601 timestamp or @unix-seconds")
@click.option("-s", "--size", type=click.IntRange(min=1), help="Entries per page")
@click.pass_obj
def continue_from_command(state: CLIState, timestamp, size):
    """Show the page containing the first commit at or after TIMESTAMP."""
    try:
        resume_at = parse_timestamp(timestamp)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--timestamp") from e

    run = _load_run(state)
    page = run.paginator(state.page_size(size)).continue_from_timestamp(resume_at)
    click.echo(f"Continuing from {resume_at.isoformat()}")
    if page.is_empty:
        click.echo("No entries in the timeline")
        return
    _echo_page(page)


@main.command("browse")
@click.option("--pages", type=click.IntRange(min=1), default=5, show_default=True)
@click.option("-s", "--size", type=click.IntRange(min=1), help="Entries per page")
@click.option("--from", "from_timestamp", help="Start at the page containing this timestamp")
@click.option(
    "--session-dir",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
    help="Where the session snapshot is written",
)
@click.option("--no-pause", is_flag=True, help="Do not wait between pages")
@click.option("--enrich/--no-enrich", default=None)
@click.pass_obj
def browse_command(state: CLIState, pages, size, from_timestamp, session_dir, no_pause, enrich):
    """Walk the timeline page by page and save a session snapshot."""
    resume_at = None
    if from_timestamp:
        try:
            resume_at = parse_timestamp(from_timestamp)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--from") from e

    run = _load_run(state)
    page_size = state.page_size(size)
    paginator = run.paginator(page_size)
    enricher = _enricher_for(state, enrich)

    session = BrowseSession(repository=run.repo_path, page_size=page_size, resumed_from=resume_at)
    first_page = paginator.page_number_for(resume_at) if resume_at else 1

    for page_number in range(first_page, first_page + pages):
        page = paginator.paginate(page_number)
        if page.is_empty:
            state.reporter.info("No more entries available")
            break

        click.echo("=" * 60)
        annotations = annotate_page(page, enricher)
        _echo_page(page, annotations)
        session.record_page(page, annotations)

        if not page.navigation.can_continue:
            break
        if not no_pause and page_number < first_page + pages - 1:
            click.pause("Press any key to continue to the next page...")

    session.finish()
    path = export_session(session, session_dir)
    state.reporter.success(f"Session saved to {path} ({len(session.pages)} pages)")


if __name__ == "__main__":
    main()
