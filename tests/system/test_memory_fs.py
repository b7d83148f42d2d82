import asyncio
from typing import Dict, List, Tuple

import pytest

from compiler_sys.system import DestroyRegistry, EventBus, MemoryFileSystem, PathUtils, WatchEvent


@pytest.fixture
def fs() -> MemoryFileSystem:
    return MemoryFileSystem(PathUtils(cwd="/work"), EventBus(), DestroyRegistry())


def snapshot(fs: MemoryFileSystem) -> Dict[str, Tuple[bool, bytes]]:
    return {p: (e.is_directory, e.content) for p, e in fs._entries.items()}


def test_missing_paths_yield_sentinels(fs):
    assert fs.access_sync("/nope") is False
    assert fs.stat_sync("/nope") is None
    assert fs.read_file_sync("/nope") is None
    assert fs.readdir_sync("/nope") == []
    assert fs.realpath_sync("/nope") is None
    assert asyncio.run(fs.access("/nope")) is False
    assert asyncio.run(fs.stat("/nope")) is None


def test_mkdir_creates_every_missing_parent(fs):
    fs.mkdir_sync("/tmp")
    results = fs.mkdir_sync("/tmp/x/y")
    assert results.error is None
    assert results.new_dirs == ["/tmp/x", "/tmp/x/y"]
    assert results.basename == "y"
    assert results.dirname == "/tmp/x"
    assert fs.stat_sync("/tmp/x/y").is_directory


def test_mkdir_non_recursive_requires_parent(fs):
    before = snapshot(fs)
    results = fs.mkdir_sync("/a/b", recursive=False)
    assert results.error is not None
    assert results.new_dirs == []
    assert snapshot(fs) == before


def test_mkdir_under_a_file_fails_without_side_effects(fs):
    fs.write_file_sync("/file.txt", "x")
    before = snapshot(fs)
    results = fs.mkdir_sync("/file.txt/sub/dir")
    assert results.error is not None
    assert results.new_dirs == []
    assert snapshot(fs) == before


def test_relative_paths_resolve_against_cwd(fs):
    fs.mkdir_sync("src")
    fs.write_file_sync("src/index.ts", "export {}")
    assert fs.read_file_sync("/work/src/index.ts") == "export {}"
    assert fs.readdir_sync("src") == ["/work/src/index.ts"]


def test_write_read_and_stat(fs):
    fs.mkdir_sync("/a")
    assert fs.write_file_sync("/a/f.txt", "héllo").ok
    assert fs.read_file_sync("/a/f.txt") == "héllo"
    st = fs.stat_sync("/a/f.txt")
    assert st.is_file and not st.is_directory and not st.is_symbolic_link
    assert st.size == len("héllo".encode("utf-8"))
    assert fs.write_file_sync("/a", "x").error is not None


def test_rmdir(fs):
    fs.mkdir_sync("/a/b")
    fs.write_file_sync("/a/b/f.txt", "1")
    fs.write_file_sync("/a/g.txt", "2")

    before = snapshot(fs)
    refused = fs.rmdir_sync("/a")
    assert refused.error is not None
    assert refused.removed_dirs == [] and refused.removed_files == []
    assert snapshot(fs) == before

    results = fs.rmdir_sync("/a", recursive=True)
    assert results.error is None
    assert sorted(results.removed_files) == ["/a/b/f.txt", "/a/g.txt"]
    assert results.removed_dirs == ["/a/b", "/a"]
    assert not fs.access_sync("/a")
    assert fs.rmdir_sync("/").error is not None


def test_rename_directory_moves_subtree(fs):
    fs.mkdir_sync("/src/lib")
    fs.write_file_sync("/src/lib/a.ts", "a")
    results = fs.rename_sync("/src", "/out")
    assert results.error is None
    assert results.is_directory and not results.is_file
    assert results.old_dirs == ["/src", "/src/lib"]
    assert results.new_files == ["/out/lib/a.ts"]
    assert ("/src/lib/a.ts", "/out/lib/a.ts") in results.renamed
    assert fs.read_file_sync("/out/lib/a.ts") == "a"
    assert not fs.access_sync("/src")
    assert fs.readdir_sync("/") == ["/out"]


def test_rename_failures_leave_state_unchanged(fs):
    fs.mkdir_sync("/src/lib")
    before = snapshot(fs)
    for old, new in [("/missing", "/x"), ("/src", "/src/lib/inner"), ("/src", "/nowhere/x")]:
        results = fs.rename_sync(old, new)
        assert results.error is not None
        assert results.renamed == [] and results.old_dirs == [] and results.new_files == []
        assert snapshot(fs) == before


def test_unlink_and_copy(fs):
    fs.write_file_sync("/a.txt", b"\x00\x01")
    assert fs.copy_file_sync("/a.txt", "/b.txt").error is None
    assert fs.stat_sync("/b.txt").size == 2
    assert fs.unlink_sync("/a.txt").error is None
    assert not fs.access_sync("/a.txt")
    assert fs.unlink_sync("/a.txt").error is not None
    fs.mkdir_sync("/d")
    assert fs.unlink_sync("/d").error is not None
    assert fs.copy_file_sync("/missing", "/c.txt").error is not None


def test_async_variants_match_sync(fs):
    async def run():
        await fs.mkdir("/p/q")
        await fs.write_file("/p/q/r.txt", "data")
        return await fs.read_file("/p/q/r.txt"), await fs.readdir("/p")

    assert asyncio.run(run()) == ("data", ["/p/q"])


def test_make_temp_dir_is_unique(fs):
    first = fs.make_temp_dir("cs-")
    second = fs.make_temp_dir("cs-")
    assert first != second
    assert first.startswith("/tmp/cs-")
    assert fs.stat_sync(first).is_directory


def test_make_temp_dir_skips_taken_names(fs):
    fs.mkdir_sync("/tmp/cs-1")
    assert fs.make_temp_dir("cs-") == "/tmp/cs-2"


def test_make_temp_dir_gives_up_when_tmp_is_unusable(fs):
    fs.write_file_sync("/tmp", "not a directory")
    with pytest.raises(OSError):
        fs.make_temp_dir("cs-")
    assert fs.read_file_sync("/tmp") == "not a directory"


def test_recursive_directory_watch_reports_each_new_path_once(fs):
    fs.mkdir_sync("/src")
    received: List[Tuple[str, WatchEvent]] = []
    published: List[str] = []
    fs.events.on(WatchEvent.FILE_ADD, published.append)

    watcher = fs.watch_directory("/src", lambda p, kind: received.append((p, kind)), recursive=True)
    fs.mkdir_sync("/src/a")
    fs.write_file_sync("/src/a/b.ts", "x")

    assert received == [("/src/a", WatchEvent.DIR_ADD), ("/src/a/b.ts", WatchEvent.FILE_ADD)]
    assert published == ["/src/a/b.ts"]
    watcher.close()


def test_non_recursive_watch_ignores_grandchildren(fs):
    fs.mkdir_sync("/src/a")
    received = []
    fs.watch_directory("/src", lambda p, kind: received.append((p, kind)))
    fs.write_file_sync("/src/a/deep.ts", "x")
    fs.write_file_sync("/src/top.ts", "x")
    assert received == [("/src/top.ts", WatchEvent.FILE_ADD)]


def test_file_watch_and_close(fs):
    received = []
    watcher = fs.watch_file("/f.ts", lambda p, kind: received.append(kind))
    assert watcher.close_async in fs.destroy_registry
    fs.write_file_sync("/f.ts", "1")
    fs.write_file_sync("/f.ts", "2")
    fs.write_file_sync("/other.ts", "2")
    fs.unlink_sync("/f.ts")
    watcher.close()
    watcher.close()
    fs.write_file_sync("/f.ts", "3")
    assert received == [WatchEvent.FILE_ADD, WatchEvent.FILE_UPDATE, WatchEvent.FILE_DELETE]
