import os

import pytest

from blobdir.cache import LocalCacheStore, LOCKS_DIR
from blobdir.errors import CacheIOError


def test_creates_directory(tmp_path):
    LocalCacheStore(str(tmp_path / "a" / "b"))

    assert (tmp_path / "a" / "b" / LOCKS_DIR).is_dir()


@pytest.mark.parametrize("name", ["", ".", "..", LOCKS_DIR, "a/b"])
def test_invalid_names(cache, name):
    with pytest.raises(CacheIOError):
        cache.path_of(name)


def test_write_read(cache):
    with cache.open_write("foo") as f:
        f.write(b"abc")

    assert cache.exists("foo")
    assert cache.length("foo") == 3

    with cache.open_read("foo") as f:
        assert f.read() == b"abc"


def test_missing_entry(cache):
    assert not cache.exists("foo")

    with pytest.raises(CacheIOError):
        cache.length("foo")

    with pytest.raises(CacheIOError):
        cache.modified("foo")

    with pytest.raises(CacheIOError):
        cache.open_read("foo")


def test_list_all_excludes_locks(cache):
    for name in ["a", "b.blob"]:
        with cache.open_write(name):
            pass

    with cache.lock("a"):
        assert sorted(cache.list_all()) == ["a", "b.blob"]


def test_modified(cache):
    with cache.open_write("foo"):
        pass

    cache.set_modified("foo", 1_234_567_890_123_456_789)

    assert cache.modified("foo") == 1_234_567_890_123_456_789


def test_touch(cache):
    with cache.open_write("foo"):
        pass

    cache.set_modified("foo", 0)

    assert cache.touch("foo")
    assert cache.modified("foo") > 0


def test_touch_missing_does_not_create(cache):
    assert not cache.touch("foo")
    assert not cache.exists("foo")


def test_delete(cache):
    with cache.open_write("foo"):
        pass

    assert cache.delete("foo")
    assert not cache.delete("foo")
    assert not cache.exists("foo")


def test_lock_files(cache):
    with cache.lock("foo"):
        assert os.path.exists(os.path.join(cache.path, LOCKS_DIR, "foo"))

    cache.clear_lock("foo")
    cache.clear_lock("foo")

    assert not os.path.exists(os.path.join(cache.path, LOCKS_DIR, "foo"))


def test_clear(cache):
    for name in ["a", "b", "c.blob"]:
        with cache.open_write(name):
            pass

    with cache.lock("a"):
        pass

    cache.clear()

    assert cache.list_all() == []
    assert os.listdir(os.path.join(cache.path, LOCKS_DIR)) == []

    # Still usable afterwards
    with cache.lock("a"):
        with cache.open_write("a") as f:
            f.write(b"x")

    assert cache.length("a") == 1
