import io

import pytest

from app.services.storage import LocalStorageProvider


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "uploads"))


def test_save_resolve_delete(storage):
    ref = storage.save_upload(io.BytesIO(b"\x89PNG data"), "Me.PNG")
    assert ref.endswith(".png")
    assert storage.exists(ref)
    with open(storage.get_absolute_path(ref), "rb") as f:
        assert f.read() == b"\x89PNG data"

    assert storage.delete(ref) is True
    assert storage.exists(ref) is False
    assert storage.delete(ref) is False


def test_refs_cannot_escape_upload_dir(storage):
    with pytest.raises(ValueError):
        storage.get_absolute_path("../../etc/passwd")
    assert storage.exists("../outside.png") is False
    assert storage.delete("../outside.png") is False
