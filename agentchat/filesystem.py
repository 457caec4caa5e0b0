"""In-memory virtual filesystem used as agent scratch space.

Two zones: ``transient`` (wiped per run) and ``persistent`` (kept for the
lifetime of the instance, never written to disk). Paths are POSIX-style and
normalized on every call.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from enum import Enum


class Zone(str, Enum):
    TRANSIENT = "transient"
    PERSISTENT = "persistent"


@dataclass
class StoredEntry:
    content: str
    is_directory: bool
    created_at: float
    modified_at: float


@dataclass
class FileEntry:
    name: str
    path: str
    is_directory: bool
    size: int
    modified_at: float


@dataclass
class FileStat:
    size: int
    is_directory: bool
    is_file: bool
    created_at: float
    modified_at: float


@dataclass
class SearchResult:
    file_path: str
    line_number: int
    line_content: str
    match_start: int
    match_end: int


def normalize_path(path: str) -> str:
    """Backslashes to slashes, collapse repeats, strip leading/trailing slashes."""
    path = re.sub(r"/+", "/", path.replace("\\", "/"))
    return path.strip("/")


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a shell glob into an anchored regex over full paths.

    ``*`` and ``?`` stay inside one path segment, ``**`` crosses separators and
    ``**/`` also matches zero directories.
    """
    pattern = normalize_path(pattern)
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def _is_hidden(relative: str) -> bool:
    return any(segment.startswith(".") for segment in relative.split("/"))


class VirtualFilesystem:
    """Zoned in-memory file store. Each run owns its own instance."""

    def __init__(self) -> None:
        self._zones: dict[Zone, dict[str, StoredEntry]] = {zone: {} for zone in Zone}

    def _store(self, zone: Zone | str) -> dict[str, StoredEntry]:
        return self._zones[Zone(zone)]

    async def read(self, path: str, zone: Zone | str = Zone.TRANSIENT) -> str:
        """Return file content.

        Raises:
            FileNotFoundError: No entry at ``path``.
            IsADirectoryError: ``path`` is a directory.
        """
        entry = self._store(zone).get(normalize_path(path))
        if entry is None:
            raise FileNotFoundError(f"File not found: {path}")
        if entry.is_directory:
            raise IsADirectoryError(f"Is a directory: {path}")
        return entry.content

    async def write(self, path: str, content: str, zone: Zone | str = Zone.TRANSIENT) -> None:
        normalized = normalize_path(path)
        if not normalized:
            raise ValueError("Cannot write to the filesystem root")
        store = self._store(zone)
        now = time.time()
        self._ensure_parent_dirs(normalized, store, now)
        existing = store.get(normalized)
        store[normalized] = StoredEntry(
            content=content,
            is_directory=False,
            created_at=existing.created_at if existing else now,
            modified_at=now,
        )

    async def exists(self, path: str, zone: Zone | str = Zone.TRANSIENT) -> bool:
        return normalize_path(path) in self._store(zone)

    async def delete(self, path: str, zone: Zone | str = Zone.TRANSIENT) -> None:
        """Remove ``path`` and, for a directory, every descendant. Missing paths are a no-op."""
        normalized = normalize_path(path)
        store = self._store(zone)
        prefix = normalized + "/"
        for key in [k for k in store if k == normalized or k.startswith(prefix)]:
            del store[key]

    async def list(
        self,
        path: str = "",
        recursive: bool = False,
        max_depth: int | None = None,
        include_hidden: bool = False,
        zone: Zone | str = Zone.TRANSIENT,
    ) -> list[FileEntry]:
        """List children of ``path``, sorted by path.

        Without ``recursive`` only direct children are returned; with it,
        descendants down to ``max_depth`` levels (unbounded when None).
        """
        normalized = normalize_path(path)
        prefix = normalized + "/" if normalized else ""
        if max_depth is None:
            max_depth = 10**9 if recursive else 1

        results: list[FileEntry] = []
        for key, entry in self._store(zone).items():
            if key == normalized or not key.startswith(prefix):
                continue
            relative = key[len(prefix):]
            if not include_hidden and _is_hidden(relative):
                continue
            if relative.count("/") + 1 > max_depth:
                continue
            results.append(FileEntry(
                name=relative.rsplit("/", 1)[-1],
                path=key,
                is_directory=entry.is_directory,
                size=len(entry.content),
                modified_at=entry.modified_at,
            ))
        return sorted(results, key=lambda e: e.path)

    async def stat(self, path: str, zone: Zone | str = Zone.TRANSIENT) -> FileStat:
        entry = self._store(zone).get(normalize_path(path))
        if entry is None:
            raise FileNotFoundError(f"Not found: {path}")
        return FileStat(
            size=len(entry.content),
            is_directory=entry.is_directory,
            is_file=not entry.is_directory,
            created_at=entry.created_at,
            modified_at=entry.modified_at,
        )

    async def glob(self, pattern: str, zone: Zone | str = Zone.TRANSIENT) -> list[str]:
        """Return file paths (never directories) matching ``pattern``."""
        regex = glob_to_regex(pattern)
        return sorted(
            key for key, entry in self._store(zone).items()
            if not entry.is_directory and regex.match(key)
        )

    async def search(
        self,
        pattern: str,
        file_pattern: str | None = None,
        case_sensitive: bool = True,
        max_results: int | None = None,
        zone: Zone | str = Zone.TRANSIENT,
    ) -> list[SearchResult]:
        """Regex line scan across files; first match per line."""
        regex = re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
        file_regex = glob_to_regex(file_pattern) if file_pattern else None
        results: list[SearchResult] = []

        for file_path in sorted(self._store(zone)):
            entry = self._store(zone)[file_path]
            if entry.is_directory:
                continue
            if file_regex and not file_regex.match(file_path):
                continue
            for number, line in enumerate(entry.content.split("\n"), start=1):
                if max_results is not None and len(results) >= max_results:
                    return results
                match = regex.search(line)
                if match:
                    results.append(SearchResult(
                        file_path=file_path,
                        line_number=number,
                        line_content=line,
                        match_start=match.start(),
                        match_end=match.end(),
                    ))
        return results

    async def clear_transient(self) -> None:
        self._zones[Zone.TRANSIENT].clear()

    @staticmethod
    def _ensure_parent_dirs(path: str, store: dict[str, StoredEntry], now: float) -> None:
        parts = path.split("/")
        for i in range(1, len(parts)):
            dir_path = "/".join(parts[:i])
            existing = store.get(dir_path)
            if existing is None:
                store[dir_path] = StoredEntry(content="", is_directory=True, created_at=now, modified_at=now)
            elif not existing.is_directory:
                raise NotADirectoryError(f"Not a directory: {dir_path}")
