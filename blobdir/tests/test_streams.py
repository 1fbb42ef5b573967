import io
from unittest import mock

import pytest

from blobdir.compression import CompressionPolicy
from blobdir.errors import CacheIOError, FileNotInStoreError
from blobdir.store import StoreError
from blobdir.store.local import LocalBlobContainer
from blobdir.streams import InputStreamReader


def write_file(directory, name, data):
    with directory.create_output(name) as out:
        out.write(data)


def test_output_tracks_length(directory):
    out = directory.create_output("foo")

    out.write(b"abc")
    out.write_byte(0x64)

    assert out.tell() == 4
    assert out.length() == 4
    assert not directory.file_exists("foo")

    out.close()

    assert out.closed
    assert directory.file_exists("foo")
    assert directory.file_length("foo") == 4


def test_output_close_twice(directory):
    out = directory.create_output("foo")
    out.write(b"abc")
    out.close()
    out.close()

    assert directory.file_length("foo") == 3


def test_write_after_close(directory):
    out = directory.create_output("foo")
    out.close()

    with pytest.raises(ValueError):
        out.write(b"abc")


def test_output_aborted_on_exception(directory):
    with pytest.raises(RuntimeError):
        with directory.create_output("foo") as out:
            out.write(b"abc")
            raise RuntimeError("failure while writing")

    assert not directory.file_exists("foo")


def test_empty_file(directory):
    write_file(directory, "foo", b"")

    assert directory.file_exists("foo")
    assert directory.file_length("foo") == 0

    with directory.open_input("foo") as f:
        assert f.length() == 0
        assert f.read() == b""


def test_upload_failure_keeps_local_copy(directory):
    out = directory.create_output("foo")
    out.write(b"abc")

    with mock.patch.object(
        LocalBlobContainer, "upload", side_effect=StoreError("unreachable")
    ):
        with pytest.raises(StoreError):
            out.close()

    assert not directory.file_exists("foo")
    assert directory.cache.length("foo.blob") == 3


def test_cache_layout(directory):
    write_file(directory, "segments.gen", b"x" * 12)

    assert directory.cache.list_all() == ["segments.gen.blob"]

    props = directory.container.get_properties("segments.gen")

    assert directory.cache.modified("segments.gen.blob") == props.last_modified_ns


def test_compressed_cache_layout(directory):
    directory.compression = CompressionPolicy(enabled=True)

    write_file(directory, "_0.tis", b"term" * 1000)

    assert sorted(directory.cache.list_all()) == ["_0.tis", "_0.tis.blob"]
    assert directory.cache.length("_0.tis") == 4000
    assert directory.cache.length("_0.tis.blob") < 4000


def test_read_methods(directory):
    write_file(directory, "foo", b"0123456789")

    with directory.open_input("foo") as f:
        assert f.length() == 10
        assert f.read(3) == b"012"
        assert f.tell() == 3
        assert f.read_byte() == ord("3")

        assert f.read_at(8, 2) == b"89"
        assert f.tell() == 4

        f.seek(7)

        assert f.read() == b"789"
        assert f.tell() == 10


def test_read_past_end(directory):
    write_file(directory, "foo", b"0123456789")

    with directory.open_input("foo") as f:
        f.seek(8)

        with pytest.raises(CacheIOError) as exc_info:
            f.read(5)

        assert exc_info.value.offset == 8

        with pytest.raises(CacheIOError):
            f.read_at(10, 1)


def test_negative_seek(directory):
    write_file(directory, "foo", b"abc")

    with directory.open_input("foo") as f:
        with pytest.raises(CacheIOError):
            f.seek(-1)


def test_read_after_close(directory):
    write_file(directory, "foo", b"abc")

    f = directory.open_input("foo")
    f.close()

    assert f.closed

    with pytest.raises(ValueError):
        f.read(1)


def test_cached_copy_reused(directory):
    write_file(directory, "foo", b"abc")

    with mock.patch.object(
        LocalBlobContainer, "download_into", side_effect=StoreError("unreachable")
    ):
        with directory.open_input("foo") as f:
            assert f.read() == b"abc"


def test_missing_cache_is_fetched(directory):
    write_file(directory, "foo", b"abc")

    directory.clear_cache()

    with directory.open_input("foo") as f:
        assert f.read() == b"abc"

    assert directory.cache.exists("foo.blob")


def test_cache_with_wrong_size_is_refetched(directory):
    write_file(directory, "foo", b"abc")

    with directory.cache.open_write("foo.blob") as f:
        f.write(b"wrong contents")

    with directory.open_input("foo") as f:
        assert f.read() == b"abc"


def test_older_cache_is_refetched(directory):
    write_file(directory, "foo", b"abc")

    with directory.cache.open_write("foo.blob") as f:
        f.write(b"xyz")

    directory.cache.set_modified("foo.blob", 0)

    with directory.open_input("foo") as f:
        assert f.read() == b"abc"


def test_failed_fetch_leaves_no_partial_copy(directory):
    write_file(directory, "foo", b"abc")
    directory.clear_cache()

    with mock.patch.object(
        LocalBlobContainer, "download_into", side_effect=StoreError("unreachable")
    ):
        with pytest.raises(FileNotInStoreError):
            directory.open_input("foo")

    assert not directory.cache.exists("foo.blob")


def test_compressed_serving_copy_rebuilt(directory):
    directory.compression = CompressionPolicy(enabled=True)

    write_file(directory, "_0.frq", b"postings" * 500)

    directory.cache.delete("_0.frq")

    with directory.open_input("_0.frq") as f:
        assert f.length() == 4000
        assert f.read() == b"postings" * 500


def test_compression_detected_from_metadata(directory):
    directory.compression = CompressionPolicy(enabled=True)

    write_file(directory, "_0.fdt", b"stored" * 500)

    directory.compression = CompressionPolicy.disabled()
    directory.clear_cache()

    with directory.open_input("_0.fdt") as f:
        assert f.read() == b"stored" * 500


def test_unsupported_codec(directory):
    directory.container.upload("foo", b"abc", {"Compression": "zstd"})

    with pytest.raises(CacheIOError):
        directory.open_input("foo")


def test_corrupt_compressed_object(directory):
    directory.container.upload("foo", b"not lz4 data", {"Compression": "lz4"})

    with pytest.raises(CacheIOError):
        directory.open_input("foo")


def test_input_reader(directory):
    write_file(directory, "foo", b"0123456789")

    reader = io.BufferedReader(InputStreamReader(directory.open_input("foo")))

    assert reader.read(4) == b"0123"

    reader.seek(-2, io.SEEK_END)

    assert reader.read() == b"89"
    assert reader.read() == b""

    reader.close()


def test_buffered_streams(directory):
    with directory.create_output_stream("foo") as f:
        for i in range(1000):
            f.write(b"%d," % i)

    expected = b"".join(b"%d," % i for i in range(1000))

    assert directory.file_length("foo") == len(expected)

    with directory.open_input_stream("foo") as f:
        assert f.read() == expected
