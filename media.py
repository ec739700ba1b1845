"""
Media store (Cloudinary) for product images and payment screenshots.

The rest of the app only keeps the returned URLs; public ids are derived
back from the URL when an image has to be removed.
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader

import config
from errors import InternalError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = ["jpg", "jpeg", "png", "webp"]

_VERSION_SEGMENT = re.compile(r"^v\d+$")

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)


def validate_image(upload) -> None:
    """Reject non-image uploads and files over the size limit."""
    content_type = getattr(upload, "content_type", None) or ""
    if not content_type.startswith("image/"):
        raise ValidationError("Only image files are allowed!")
    fh = upload.file
    fh.seek(0, 2)
    size = fh.tell()
    fh.seek(0)
    if size > config.MAX_UPLOAD_BYTES:
        raise ValidationError(f"{upload.filename or 'File'} is larger than 5MB")


def upload_image(upload, folder: str, max_side: int = 800) -> Dict[str, Any]:
    try:
        result = cloudinary.uploader.upload(
            upload.file,
            folder=folder,
            resource_type="image",
            allowed_formats=ALLOWED_FORMATS,
            transformation=[
                {"width": max_side, "height": max_side, "crop": "limit"},
                {"quality": "auto:good"},
            ],
        )
    except cloudinary.exceptions.Error as exc:
        raise InternalError("Image upload failed") from exc
    logger.info("Uploaded %s to %s", upload.filename, result.get("public_id"))
    return {"url": result["secure_url"], "public_id": result["public_id"]}


def delete_image(public_id: str) -> Dict[str, Any]:
    return cloudinary.uploader.destroy(public_id)


def extract_public_id(url: Optional[str]) -> Optional[str]:
    """
    Turn a delivery URL into its public id, e.g.
    https://res.cloudinary.com/demo/image/upload/v1712/ayosi-products/ab12.jpg
    -> ayosi-products/ab12
    """
    if not url or "cloudinary.com" not in url or "/upload/" not in url:
        return None
    path = url.split("/upload/", 1)[1].split("?", 1)[0]
    segments = [s for s in path.split("/") if s]
    # drop transformation and version segments that precede the public id
    while segments and ("," in segments[0] or _VERSION_SEGMENT.match(segments[0])):
        segments.pop(0)
    if not segments:
        return None
    segments[-1] = segments[-1].rsplit(".", 1)[0]
    return "/".join(segments)


def delete_images_quietly(urls: Iterable[str]) -> None:
    """Best-effort removal; failures are logged and swallowed."""
    for url in urls:
        public_id = extract_public_id(url)
        if not public_id:
            continue
        try:
            delete_image(public_id)
            logger.info("Deleted image %s", public_id)
        except Exception:
            logger.exception("Error deleting image %s", public_id)
