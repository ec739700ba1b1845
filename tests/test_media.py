import io

import pytest
from starlette.datastructures import Headers, UploadFile

import config
import media
from errors import ValidationError


@pytest.mark.parametrize("url, expected", [
    ("https://res.cloudinary.com/demo/image/upload/v1712345678/ayosi-products/ab12cd.jpg", "ayosi-products/ab12cd"),
    ("https://res.cloudinary.com/demo/image/upload/w_800,c_limit/v1/ayosi-products/x.webp", "ayosi-products/x"),
    ("https://res.cloudinary.com/demo/image/upload/plain.png", "plain"),
    ("https://images.unsplash.com/photo-1.jpg", None),
    ("", None),
])
def test_extract_public_id(url, expected):
    assert media.extract_public_id(url) == expected


def test_validate_image_rejects_large_files(monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 10)
    upload = UploadFile(file=io.BytesIO(b"x" * 11), filename="big.png", headers=Headers({"content-type": "image/png"}))
    with pytest.raises(ValidationError, match="larger than"):
        media.validate_image(upload)


def test_validate_image_rewinds_the_file():
    upload = UploadFile(file=io.BytesIO(b"png-bytes"), filename="ok.png", headers=Headers({"content-type": "image/png"}))
    media.validate_image(upload)
    assert upload.file.read() == b"png-bytes"


def test_delete_images_quietly_skips_foreign_urls(media_store):
    media.delete_images_quietly([
        "https://images.unsplash.com/photo-1.jpg",
        "https://res.cloudinary.com/demo/image/upload/v1/ayosi-products/ring.jpg",
    ])
    assert media_store.deleted == ["ayosi-products/ring"]
