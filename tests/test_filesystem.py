"""Tests for agentchat/filesystem.py."""

import pytest

from agentchat.filesystem import VirtualFilesystem, Zone, glob_to_regex, normalize_path


@pytest.fixture
def fs() -> VirtualFilesystem:
    return VirtualFilesystem()


@pytest.mark.parametrize(
    "raw, expected",
    [("/a//b/", "a/b"), ("a\\b\\c.txt", "a/b/c.txt"), ("///", ""), ("plain", "plain")],
)
def test_normalize_path(raw, expected):
    assert normalize_path(raw) == expected


def test_glob_star_stays_in_segment():
    regex = glob_to_regex("*.ts")
    assert regex.match("a.ts")
    assert not regex.match("src/a.ts")


def test_glob_double_star_crosses_segments():
    regex = glob_to_regex("**/*.ts")
    assert regex.match("src/x/y.ts")
    assert regex.match("y.ts")
    assert not regex.match("src/x/y.tsx")


def test_glob_question_mark():
    regex = glob_to_regex("file?.md")
    assert regex.match("file1.md")
    assert not regex.match("file12.md")


async def test_write_then_read(fs):
    await fs.write("/notes/a.md", "hello")
    assert await fs.read("notes/a.md") == "hello"


async def test_read_missing_raises(fs):
    with pytest.raises(FileNotFoundError):
        await fs.read("nope.txt")


async def test_read_directory_raises(fs):
    await fs.write("dir/file.txt", "x")
    with pytest.raises(IsADirectoryError):
        await fs.read("dir")


async def test_write_root_rejected(fs):
    with pytest.raises(ValueError):
        await fs.write("/", "x")


async def test_write_under_file_rejected(fs):
    await fs.write("a", "file")
    with pytest.raises(NotADirectoryError):
        await fs.write("a/b.txt", "x")


async def test_write_creates_parent_directories(fs):
    await fs.write("a/b/c.txt", "deep")
    assert (await fs.stat("a")).is_directory
    assert (await fs.stat("a/b")).is_directory
    assert (await fs.stat("a/b/c.txt")).is_file


async def test_overwrite_keeps_created_at(fs):
    await fs.write("f.txt", "one")
    created = (await fs.stat("f.txt")).created_at
    await fs.write("f.txt", "two")
    stat = await fs.stat("f.txt")
    assert stat.created_at == created
    assert stat.size == 3
    assert await fs.read("f.txt") == "two"


async def test_zones_are_isolated(fs):
    await fs.write("shared.txt", "transient")
    await fs.write("shared.txt", "persistent", zone=Zone.PERSISTENT)
    assert await fs.read("shared.txt") == "transient"
    assert await fs.read("shared.txt", zone="persistent") == "persistent"


async def test_clear_transient_keeps_persistent(fs):
    await fs.write("t.txt", "x")
    await fs.write("p.txt", "y", zone=Zone.PERSISTENT)
    await fs.clear_transient()
    assert not await fs.exists("t.txt")
    assert await fs.exists("p.txt", zone=Zone.PERSISTENT)


async def test_delete_removes_descendants(fs):
    await fs.write("a/b/c.txt", "x")
    await fs.write("ab.txt", "keep")
    await fs.delete("a")
    assert not await fs.exists("a")
    assert not await fs.exists("a/b/c.txt")
    assert await fs.exists("ab.txt")


async def test_delete_missing_is_noop(fs):
    await fs.delete("ghost")


async def test_list_direct_children(fs):
    await fs.write("a/b/c.txt", "x")
    await fs.write("a/d.txt", "y")
    entries = await fs.list("a")
    assert [e.path for e in entries] == ["a/b", "a/d.txt"]
    assert entries[0].is_directory


async def test_list_recursive(fs):
    await fs.write("a/b/c.txt", "x")
    entries = await fs.list("a", recursive=True)
    assert [e.path for e in entries] == ["a/b", "a/b/c.txt"]
    assert entries[1].name == "c.txt"


async def test_list_max_depth(fs):
    await fs.write("a/b/c/d.txt", "x")
    entries = await fs.list("", recursive=True, max_depth=2)
    assert [e.path for e in entries] == ["a", "a/b"]


async def test_list_hides_dotfiles_by_default(fs):
    await fs.write(".hidden", "x")
    await fs.write("visible", "y")
    assert [e.name for e in await fs.list()] == ["visible"]
    assert [e.name for e in await fs.list(include_hidden=True)] == [".hidden", "visible"]


async def test_stat_missing_raises(fs):
    with pytest.raises(FileNotFoundError):
        await fs.stat("missing")


async def test_glob_returns_files_only(fs):
    await fs.write("src/x/y.ts", "")
    await fs.write("src/x/z.tsx", "")
    await fs.write("top.ts", "")
    assert await fs.glob("**/*.ts") == ["src/x/y.ts", "top.ts"]
    assert await fs.glob("*.ts") == ["top.ts"]
    assert await fs.glob("src/**") == ["src/x/y.ts", "src/x/z.tsx"]


async def test_search_reports_line_and_span(fs):
    await fs.write("a.py", "import os\nTODO fix\n")
    results = await fs.search("TODO")
    assert len(results) == 1
    hit = results[0]
    assert (hit.file_path, hit.line_number, hit.line_content) == ("a.py", 2, "TODO fix")
    assert (hit.match_start, hit.match_end) == (0, 4)


async def test_search_case_insensitive_and_file_filter(fs):
    await fs.write("a.md", "Hello")
    await fs.write("b.txt", "hello")
    assert [r.file_path for r in await fs.search("hello", case_sensitive=False)] == ["a.md", "b.txt"]
    assert [r.file_path for r in await fs.search("hello", file_pattern="*.txt")] == ["b.txt"]


async def test_search_max_results(fs):
    await fs.write("many.txt", "x\nx\nx\nx")
    assert len(await fs.search("x", max_results=2)) == 2
