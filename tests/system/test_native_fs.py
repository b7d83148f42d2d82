import asyncio
import os
from pathlib import Path
from typing import List

import pytest

from compiler_sys.system import DestroyRegistry, EventBus, NativeFileSystem, PathUtils, normalize_path


@pytest.fixture
def root(tmp_path: Path) -> str:
    return normalize_path(str(tmp_path))


@pytest.fixture
def fs(root: str) -> NativeFileSystem:
    return NativeFileSystem(PathUtils(cwd=root), EventBus(), DestroyRegistry())


def tree(root: str) -> List[str]:
    out = []
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            out.append(os.path.relpath(os.path.join(dirpath, name), root))
    return sorted(out)


def test_missing_paths_yield_sentinels(fs, root):
    missing = f"{root}/does/not/exist"
    assert fs.access_sync(missing) is False
    assert fs.stat_sync(missing) is None
    assert fs.read_file_sync(missing) is None
    assert fs.readdir_sync(missing) == []
    assert fs.realpath_sync(missing) is None
    assert fs.is_symbolic_link_sync(missing) is False

    async def run():
        return (
            await fs.access(missing),
            await fs.stat(missing),
            await fs.read_file(missing),
            await fs.readdir(missing),
            await fs.realpath(missing),
        )

    assert asyncio.run(run()) == (False, None, None, [], None)


def test_mkdir_reports_created_parents(fs, root):
    results = fs.mkdir_sync("tmp/x/y")
    assert results.error is None
    assert results.path == f"{root}/tmp/x/y"
    assert results.new_dirs == [f"{root}/tmp", f"{root}/tmp/x", f"{root}/tmp/x/y"]
    assert os.path.isdir(os.path.join(root, "tmp", "x", "y"))

    again = fs.mkdir_sync("tmp/x/y")
    assert again.error is None
    assert again.new_dirs == []


def test_mkdir_failure_rolls_back(fs, root):
    Path(root, "blocker").write_text("file")
    before = tree(root)
    results = fs.mkdir_sync("blocker/sub")
    assert results.error is not None
    assert results.new_dirs == []
    assert tree(root) == before

    results = asyncio.run(fs.mkdir("blocker"))
    assert results.error is not None
    assert tree(root) == before


def test_write_read_stat(fs, root):
    assert fs.write_file_sync("a.txt", "hello").error is None
    assert fs.read_file_sync("a.txt") == "hello"
    st = fs.stat_sync("a.txt")
    assert st.is_file and not st.is_directory and st.size == 5

    async def run():
        await fs.write_file("b.bin", b"\x00\x01\x02")
        return await fs.stat("b.bin")

    assert asyncio.run(run()).size == 3
    assert fs.readdir_sync(".") == [f"{root}/a.txt", f"{root}/b.bin"]


def test_write_into_missing_directory_fails_cleanly(fs, root):
    before = tree(root)
    results = fs.write_file_sync("missing/dir/a.txt", "x")
    assert results.error is not None
    assert tree(root) == before


def test_rmdir(fs, root):
    fs.mkdir_sync("d/e")
    fs.write_file_sync("d/e/f.txt", "1")
    fs.write_file_sync("d/g.txt", "2")

    before = tree(root)
    refused = fs.rmdir_sync("d")
    assert refused.error is not None
    assert refused.removed_dirs == []
    assert tree(root) == before

    results = fs.rmdir_sync("d", recursive=True)
    assert results.error is None
    assert sorted(results.removed_files) == [f"{root}/d/e/f.txt", f"{root}/d/g.txt"]
    assert results.removed_dirs == [f"{root}/d/e", f"{root}/d"]
    assert not os.path.exists(os.path.join(root, "d"))


def test_async_rmdir_missing(fs):
    results = asyncio.run(fs.rmdir("nope", recursive=True))
    assert results.error is not None
    assert results.removed_dirs == [] and results.removed_files == []


def test_rename(fs, root):
    fs.mkdir_sync("src/lib")
    fs.write_file_sync("src/lib/a.ts", "a")
    results = fs.rename_sync("src", "out")
    assert results.error is None
    assert results.is_directory
    assert results.old_dirs == [f"{root}/src", f"{root}/src/lib"]
    assert results.new_files == [f"{root}/out/lib/a.ts"]
    assert fs.read_file_sync("out/lib/a.ts") == "a"

    before = tree(root)
    failed = asyncio.run(fs.rename("missing", "elsewhere"))
    assert failed.error is not None
    assert failed.renamed == [] and failed.old_files == []
    assert tree(root) == before


def test_unlink_and_copy(fs, root):
    fs.write_file_sync("a.txt", "x")
    assert fs.copy_file_sync("a.txt", "b.txt").error is None
    assert asyncio.run(fs.copy_file("a.txt", "c.txt")).error is None
    assert fs.unlink_sync("a.txt").error is None
    assert fs.unlink_sync("a.txt").error is not None
    assert asyncio.run(fs.unlink("b.txt")).error is None
    assert tree(root) == ["c.txt"]
    assert fs.copy_file_sync("missing", "d.txt").error is not None


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinks(fs, root):
    fs.write_file_sync("target.txt", "t")
    os.symlink(os.path.join(root, "target.txt"), os.path.join(root, "link.txt"))
    assert fs.is_symbolic_link_sync("link.txt") is True
    assert asyncio.run(fs.is_symbolic_link("link.txt")) is True
    assert fs.stat_sync("link.txt").is_symbolic_link
    assert fs.realpath_sync("link.txt") == normalize_path(os.path.realpath(os.path.join(root, "target.txt")))
    assert asyncio.run(fs.realpath("link.txt")) == fs.realpath_sync("link.txt")


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_realpath_of_dangling_link_is_none(fs, root):
    os.symlink(os.path.join(root, "gone.txt"), os.path.join(root, "dangling.txt"))
    assert fs.is_symbolic_link_sync("dangling.txt") is True
    assert fs.realpath_sync("dangling.txt") is None
    assert asyncio.run(fs.realpath("dangling.txt")) is None


def test_make_temp_dir(fs):
    path = fs.make_temp_dir("cs-native-")
    try:
        assert "/" in path and "\\" not in path
        assert fs.stat_sync(path).is_directory
    finally:
        fs.remove_tree_sync(path)
    assert not fs.access_sync(path)
