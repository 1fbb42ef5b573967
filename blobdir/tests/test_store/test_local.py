import io
from unittest import mock

import pytest

from blobdir.store import (
    BlobExistsError,
    BlobModifiedError,
    BlobNotFoundError,
    LocalBlobService,
    StoreError,
)


@pytest.fixture
def container(store):
    container = store.get_container("test")
    container.create_if_not_exists()
    return container


def test_create_if_not_exists(store):
    container = store.get_container("test")

    assert container.create_if_not_exists()
    assert not container.create_if_not_exists()


def test_invalid_container_name(store):
    with pytest.raises(ValueError):
        store.get_container("..")


def test_missing_container(store):
    container = store.get_container("missing")

    with pytest.raises(BlobNotFoundError):
        list(container.list_blobs())

    with pytest.raises(BlobNotFoundError):
        container.get_properties("foo")

    assert not container.delete("foo")


def test_upload_download(container):
    props = container.upload("foo", b"abc", {"key": "value"})

    assert props.name == "foo"
    assert props.size == 3
    assert props.metadata == {"key": "value"}
    assert props.etag

    assert container.download("foo") == b"abc"


def test_upload_file_object(container):
    container.upload("foo", io.BytesIO(b"abcdef"))

    buf = io.BytesIO()

    assert container.download_into("foo", buf) == 6
    assert buf.getvalue() == b"abcdef"


def test_download_missing(container):
    with pytest.raises(BlobNotFoundError):
        container.download("foo")

    with pytest.raises(BlobNotFoundError):
        container.download_into("foo", io.BytesIO())


def test_overwrite_changes_etag(container):
    first = container.upload("foo", b"abc")
    second = container.upload("foo", b"defg")

    assert first.etag != second.etag
    assert container.download("foo") == b"defg"
    assert container.get_properties("foo").size == 4


def test_conditional_create(container):
    container.upload("foo", b"abc", overwrite=False)

    with pytest.raises(BlobExistsError):
        container.upload("foo", b"def", overwrite=False)

    assert container.download("foo") == b"abc"


def test_conditional_create_leaves_no_temp_files(container, tmp_path):
    container.upload("foo", b"abc", overwrite=False)

    with pytest.raises(BlobExistsError):
        container.upload("foo", b"def", overwrite=False)

    assert list((tmp_path / "store" / "test" / "tmp").iterdir()) == []


def test_set_metadata(container):
    before = container.upload("foo", b"abc", {"a": "1"})
    after = container.set_metadata("foo", {"b": "2"})

    assert after.metadata == {"b": "2"}
    assert after.etag != before.etag
    assert after.last_modified >= before.last_modified
    assert container.get_properties("foo").metadata == {"b": "2"}


def test_set_metadata_missing(container):
    with pytest.raises(BlobNotFoundError):
        container.set_metadata("foo", {})


def test_delete(container):
    container.upload("foo", b"abc")

    assert container.delete("foo")
    assert not container.delete("foo")
    assert not container.exists("foo")


def test_delete_with_etag(container):
    props = container.upload("foo", b"abc")
    container.upload("foo", b"def")

    with pytest.raises(BlobModifiedError):
        container.delete("foo", etag=props.etag)

    current = container.get_properties("foo")

    assert container.delete("foo", etag=current.etag)
    assert not container.exists("foo")


def test_list_blobs(container):
    for name in ["b", "a", "__locks__/write.lock", "c"]:
        container.upload(name, name.encode())

    assert [p.name for p in container.list_blobs()] == [
        "__locks__/write.lock",
        "a",
        "b",
        "c",
    ]

    assert [p.name for p in container.list_blobs("__locks__/")] == [
        "__locks__/write.lock"
    ]


def test_names_with_slashes_stay_flat(container, tmp_path):
    container.upload("x/y", b"abc")

    assert container.download("x/y") == b"abc"
    assert len(list((tmp_path / "store" / "test" / "objects").iterdir())) == 1


def test_upload_failure(container):
    with mock.patch("blobdir.store.local.os.replace", side_effect=PermissionError()):
        with pytest.raises(StoreError):
            container.upload("foo", b"abc")

    assert not container.exists("foo")


def test_separate_handles_share_objects(store):
    a = store.get_container("test")
    a.create_if_not_exists()
    a.upload("foo", b"abc")

    b = LocalBlobService(store.root).get_container("test")

    assert b.download("foo") == b"abc"


def test_corrupt_sidecar(container, tmp_path):
    container.upload("foo", b"abc")

    (tmp_path / "store" / "test" / "meta" / "foo.json").write_text("{corrupt")

    with pytest.raises(StoreError):
        container.get_properties("foo")


def test_empty_name(container):
    with pytest.raises(StoreError):
        container.get_properties("")

    with pytest.raises(StoreError):
        container.upload("", b"abc")

    assert [p.name for p in container.list_blobs()] == []
