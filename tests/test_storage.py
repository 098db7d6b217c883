import pytest

from storage import MediaStorage, UploadRejected, validate_image


def test_accepts_known_image_types():
    assert validate_image("image/png", 10, max_bytes=100) == "png"
    assert validate_image("IMAGE/JPEG", 10, max_bytes=100) == "jpg"


@pytest.mark.parametrize("content_type, size, message", [
    ("application/pdf", 10, "Unsupported file type"),
    (None, 10, "Unsupported file type"),
    ("image/png", 0, "empty"),
    ("image/png", 101, "too large"),
])
def test_rejects_bad_uploads(content_type, size, message):
    with pytest.raises(UploadRejected, match=message):
        validate_image(content_type, size, max_bytes=100)


def test_save_writes_file_and_returns_public_url(tmp_path):
    media = MediaStorage(root=str(tmp_path), base_url="/media/", max_bytes=100)
    url = media.save(b"\x89PNG....", "image/png")

    assert url.startswith("/media/avatars/") and url.endswith(".png")
    stored = tmp_path / url[len("/media/"):]
    assert stored.read_bytes() == b"\x89PNG...."


def test_rejected_upload_writes_nothing(tmp_path):
    media = MediaStorage(root=str(tmp_path), max_bytes=4)
    with pytest.raises(UploadRejected):
        media.save(b"too big", "image/gif")
    assert list(tmp_path.iterdir()) == []
