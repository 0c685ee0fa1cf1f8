"""
Tests for the directory crawler.
"""
import os

import pytest

from conftest import write_file
from sync_uploader.scanner import DirectoryCrawler, normalize_path
from sync_uploader.tracker import DONE


def crawled_paths(crawler, root):
    return [unit.path for unit in crawler.crawl(str(root))]


@pytest.mark.parametrize("raw, expected", [
    ("C:\\data\\a.txt", "/data/a.txt"),
    ("d:/data/a.txt", "/data/a.txt"),
    ("/data/a.txt", "/data/a.txt"),
    ("data\\sub\\b.txt", "data/sub/b.txt"),
])
def test_normalize_path(raw, expected):
    assert normalize_path(raw) == expected


def test_crawl_is_depth_first_in_name_order(state_index, tmp_upload_dir):
    """Test that subdirectories are fully visited before later siblings."""
    write_file(tmp_upload_dir / "a" / "1.txt", 1)
    write_file(tmp_upload_dir / "a" / "b" / "2.txt", 2)
    write_file(tmp_upload_dir / "a" / "c.txt", 3)
    write_file(tmp_upload_dir / "z.txt", 4)

    crawler = DirectoryCrawler(state_index)
    units = list(crawler.crawl(str(tmp_upload_dir)))

    assert [u.path for u in units] == [
        normalize_path(str(tmp_upload_dir / "a" / "1.txt")),
        normalize_path(str(tmp_upload_dir / "a" / "b" / "2.txt")),
        normalize_path(str(tmp_upload_dir / "a" / "c.txt")),
        normalize_path(str(tmp_upload_dir / "z.txt")),
    ]
    assert [u.size for u in units] == [1, 2, 3, 4]
    assert all(u.local_path and not u.is_pack for u in units)


def test_ignored_directory_is_never_crawled(state_index, tmp_upload_dir):
    """Test that files under an ignored path never show up."""
    write_file(tmp_upload_dir / "keep" / "a.txt", 1)
    write_file(tmp_upload_dir / "skip" / "b.txt", 1)
    write_file(tmp_upload_dir / "skip" / "deep" / "c.txt", 1)

    crawler = DirectoryCrawler(state_index, ignore_paths=[str(tmp_upload_dir / "skip")])
    paths = crawled_paths(crawler, tmp_upload_dir)

    assert paths == [normalize_path(str(tmp_upload_dir / "keep" / "a.txt"))]


def test_ignored_file_is_skipped(state_index, tmp_upload_dir):
    write_file(tmp_upload_dir / "a.txt", 1)
    write_file(tmp_upload_dir / "b.txt", 1)

    crawler = DirectoryCrawler(state_index, ignore_paths=[str(tmp_upload_dir / "a.txt")])

    assert crawled_paths(crawler, tmp_upload_dir) == [normalize_path(str(tmp_upload_dir / "b.txt"))]


def test_done_file_is_skipped_and_crawl_continues(state_index, tmp_upload_dir):
    """Test that one uploaded file does not stop the rest of the traversal."""
    first = write_file(tmp_upload_dir / "a.txt", 1)
    write_file(tmp_upload_dir / "b.txt", 1)
    write_file(tmp_upload_dir / "sub" / "c.txt", 1)
    state_index.mark_done(normalize_path(str(first)))

    crawler = DirectoryCrawler(state_index)
    paths = crawled_paths(crawler, tmp_upload_dir)

    assert paths == [
        normalize_path(str(tmp_upload_dir / "b.txt")),
        normalize_path(str(tmp_upload_dir / "sub" / "c.txt")),
    ]
    assert crawler.files_seen == 3
    assert crawler.files_skipped == 1


def test_file_in_finished_pack_is_skipped(state_index, tmp_upload_dir):
    a = write_file(tmp_upload_dir / "a.txt", 1)
    b = write_file(tmp_upload_dir / "b.txt", 1)
    state_index.put(normalize_path(str(a)), "pack.0.abc.zip")
    state_index.put(normalize_path(str(b)), "pack.1.def.zip")
    state_index.put("pack.0.abc.zip", DONE)

    crawler = DirectoryCrawler(state_index)

    assert crawled_paths(crawler, tmp_upload_dir) == [normalize_path(str(b))]
    assert crawler.files_pending == 1


def test_symlink_cycle_terminates(state_index, tmp_upload_dir):
    """Test that a link back to an ancestor is visited only once."""
    write_file(tmp_upload_dir / "a" / "file.txt", 1)
    os.symlink(tmp_upload_dir, tmp_upload_dir / "a" / "loop")
    os.symlink(tmp_upload_dir / "a", tmp_upload_dir / "alias")

    crawler = DirectoryCrawler(state_index)
    paths = crawled_paths(crawler, tmp_upload_dir)

    assert paths == [normalize_path(str(tmp_upload_dir / "a" / "file.txt"))]


def test_unreadable_directory_is_skipped(state_index, tmp_upload_dir, monkeypatch, caplog):
    """Test that a directory read failure only loses that subtree."""
    write_file(tmp_upload_dir / "bad" / "hidden.txt", 1)
    write_file(tmp_upload_dir / "good" / "visible.txt", 1)

    original = DirectoryCrawler._list_directory

    def list_directory(self, directory):
        if directory.endswith("bad"):
            raise PermissionError(13, "Permission denied", directory)
        return original(self, directory)

    monkeypatch.setattr(DirectoryCrawler, "_list_directory", list_directory)

    crawler = DirectoryCrawler(state_index)
    paths = crawled_paths(crawler, tmp_upload_dir)

    assert paths == [normalize_path(str(tmp_upload_dir / "good" / "visible.txt"))]
    assert crawler.dirs_failed == 1
    assert "skipping subtree" in caplog.text


def test_missing_root_yields_nothing(state_index, tmp_path):
    crawler = DirectoryCrawler(state_index)

    assert crawled_paths(crawler, tmp_path / "missing") == []
    assert crawler.dirs_failed == 1


def test_broken_symlink_is_skipped(state_index, tmp_upload_dir):
    write_file(tmp_upload_dir / "a.txt", 1)
    os.symlink(tmp_upload_dir / "gone.txt", tmp_upload_dir / "dangling.txt")

    crawler = DirectoryCrawler(state_index)

    assert crawled_paths(crawler, tmp_upload_dir) == [normalize_path(str(tmp_upload_dir / "a.txt"))]


def test_crawl_is_lazy(state_index, tmp_upload_dir):
    for i in range(5):
        write_file(tmp_upload_dir / f"{i}.txt", 1)

    crawler = DirectoryCrawler(state_index)
    units = crawler.crawl(str(tmp_upload_dir))
    next(units)

    assert crawler.files_seen == 1
