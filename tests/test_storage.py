import io
from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError

from mafifulus import storage


@pytest.fixture()
def local(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "S3_BUCKET", None)
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


class NoSuchKey(Exception):
    pass


class FakeS3:
    exceptions = SimpleNamespace(NoSuchKey=NoSuchKey)

    def __init__(self):
        self.objects = {}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise NoSuchKey(Key)
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, Bucket, Key, Body):
        self.objects[Key] = Body

    def list_objects_v2(self, Bucket, Prefix):
        keys = [k for k in self.objects if k.startswith(Prefix)]
        return {"Contents": [{"Key": k} for k in keys]} if keys else {}


def test_local_save_load_list(local):
    assert storage.save_file("b.pdf", b"%PDF-b")
    assert storage.save_file("a.pdf", b"%PDF-a")
    assert storage.load_file("a.pdf") == b"%PDF-a"
    assert storage.load_file("missing.pdf") is None
    assert storage.list_files() == ["a.pdf", "b.pdf"]
    assert storage.list_files("other") == []


def test_local_paths_stay_in_upload_dir(local):
    storage.save_file("../../escape.pdf", b"x")
    assert (local / "statements" / "escape.pdf").exists()


def test_file_ids_are_unique():
    first, second = storage.new_file_id(), storage.new_file_id()
    assert first.startswith("file-")
    assert first != second


def test_s3_save_and_list(monkeypatch):
    fake = FakeS3()
    monkeypatch.setattr(storage, "S3_BUCKET", "bucket")
    monkeypatch.setattr(storage, "get_s3_client", lambda: fake)

    assert storage.save_file("x.pdf", b"%PDF")
    assert fake.objects == {"statements/x.pdf": b"%PDF"}
    assert storage.list_files() == ["x.pdf"]
    assert storage.list_files("empty") == []


def test_s3_errors_are_reported_as_failure(monkeypatch):
    def broken(**kwargs):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutObject")

    monkeypatch.setattr(storage, "S3_BUCKET", "bucket")
    monkeypatch.setattr(storage, "get_s3_client", lambda: SimpleNamespace(put_object=broken, list_objects_v2=broken))
    assert storage.save_file("x.pdf", b"%PDF") is False
    assert storage.list_files() == []


def test_s3_load(monkeypatch):
    fake = FakeS3()
    fake.objects["statements/x.pdf"] = b"%PDF-x"
    monkeypatch.setattr(storage, "S3_BUCKET", "bucket")
    monkeypatch.setattr(storage, "get_s3_client", lambda: fake)

    assert storage.load_file("x.pdf") == b"%PDF-x"
    assert storage.load_file("missing.pdf") is None


def test_s3_load_error_is_none(monkeypatch):
    def broken(**kwargs):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "GetObject")

    client = SimpleNamespace(exceptions=FakeS3.exceptions, get_object=broken)
    monkeypatch.setattr(storage, "S3_BUCKET", "bucket")
    monkeypatch.setattr(storage, "get_s3_client", lambda: client)
    assert storage.load_file("x.pdf") is None
