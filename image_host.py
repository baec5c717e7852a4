"""Cloudinary storage for listing photos.

Every stored image is a ``{"url": ..., "filename": ...}`` pair where
``filename`` is the Cloudinary public id used for deletion.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from werkzeug.datastructures import FileStorage

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class ImageHostError(Exception):
    def __init__(self, message: str, destroyed: Optional[List[str]] = None) -> None:
        super().__init__(message)
        # Filenames already removed from the host before the failure.
        self.destroyed = destroyed or []


def configure(cloud_name=None, api_key=None, api_secret=None) -> None:
    cloudinary.config(
        cloud_name=cloud_name or os.environ.get("CLOUDINARY_CLOUD_NAME"),
        api_key=api_key or os.environ.get("CLOUDINARY_KEY"),
        api_secret=api_secret or os.environ.get("CLOUDINARY_SECRET"),
        secure=True,
    )


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def selected_files(files: Iterable[FileStorage]) -> List[FileStorage]:
    return [f for f in files if f and f.filename and allowed_file(f.filename)]


def upload_images(files: Iterable[FileStorage], folder: str = "ToiletFinder") -> List[Dict[str, str]]:
    images: List[Dict[str, str]] = []
    for file in selected_files(files):
        try:
            result = cloudinary.uploader.upload(file.stream, folder=folder, resource_type="image")
        except CloudinaryError as exc:
            logger.exception("Cloudinary upload failed filename=%r", file.filename)
            raise ImageHostError(str(exc) or "Image upload failed") from exc
        images.append({"url": result["secure_url"], "filename": result["public_id"]})
    return images


def destroy_images(filenames: Iterable[str]) -> None:
    done: List[str] = []
    for filename in filenames:
        try:
            cloudinary.uploader.destroy(filename)
        except CloudinaryError as exc:
            logger.exception("Cloudinary destroy failed filename=%r", filename)
            raise ImageHostError(str(exc) or "Image deletion failed", destroyed=done) from exc
        done.append(filename)


def remove_images(images: List[Dict[str, str]], filenames: Iterable[str]) -> List[Dict[str, str]]:
    """Return ``images`` without the entries whose filename is listed."""
    doomed = set(filenames)
    return [img for img in images if img.get("filename") not in doomed]
