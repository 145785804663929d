"""Local object store and object path naming."""
import asyncio

import pytest

from app.services.storage import LocalObjectStore, StorageError, build_object_path, sanitize_filename


def test_sanitize_replaces_everything_outside_safe_set():
    assert sanitize_filename("Blood Test (März) #2.pdf") == "Blood_Test__M_rz___2.pdf"
    assert sanitize_filename("scan-01.final.PNG") == "scan-01.final.PNG"


def test_object_path_namespaced_by_user_and_timestamp():
    assert build_object_path("user-1", "my scan.jpg", timestamp_ms=1700000000000) == "user-1/1700000000000_my_scan.jpg"


def test_upload_download_delete(tmp_path):
    store = LocalObjectStore(tmp_path, public_url="/files/")
    path = asyncio.run(store.upload("u1/1_scan.jpg", b"jpeg-bytes", "image/jpeg"))
    assert path == "u1/1_scan.jpg"
    assert (tmp_path / "u1" / "1_scan.jpg").read_bytes() == b"jpeg-bytes"
    assert store.get_public_url(path) == "/files/u1/1_scan.jpg"
    assert asyncio.run(store.download(path)) == b"jpeg-bytes"
    asyncio.run(store.delete(path))
    with pytest.raises(StorageError):
        asyncio.run(store.download(path))


def test_upload_does_not_overwrite(tmp_path):
    store = LocalObjectStore(tmp_path)
    asyncio.run(store.upload("u1/1_a.pdf", b"first"))
    with pytest.raises(StorageError):
        asyncio.run(store.upload("u1/1_a.pdf", b"second"))
    assert asyncio.run(store.download("u1/1_a.pdf")) == b"first"


@pytest.mark.parametrize("path", ["../escape.pdf", "/etc/passwd", "u1/../../x", ""])
def test_rejects_paths_outside_root(tmp_path, path):
    store = LocalObjectStore(tmp_path)
    with pytest.raises(StorageError):
        asyncio.run(store.upload(path, b"x"))
