from __future__ import annotations

import io

import cloudinary.uploader
import pytest
from cloudinary.exceptions import Error as CloudinaryError
from werkzeug.datastructures import FileStorage

from image_host import ImageHostError, allowed_file, destroy_images, remove_images, upload_images


def storage(name):
    return FileStorage(stream=io.BytesIO(b"fake image bytes"), filename=name)


def test_allowed_file():
    assert allowed_file("stall.JPG")
    assert allowed_file("map.webp")
    assert not allowed_file("notes.txt")
    assert not allowed_file("noextension")


def test_upload_skips_disallowed_and_empty_files(monkeypatch):
    uploaded = []

    def fake_upload(stream, folder=None, resource_type=None):
        uploaded.append(folder)
        return {"secure_url": f"https://res.example/{len(uploaded)}.jpg", "public_id": f"{folder}/img{len(uploaded)}"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    images = upload_images([storage("a.jpg"), storage("b.txt"), storage(""), storage("c.png")], folder="Test")
    assert images == [
        {"url": "https://res.example/1.jpg", "filename": "Test/img1"},
        {"url": "https://res.example/2.jpg", "filename": "Test/img2"},
    ]


def test_upload_failure_raises(monkeypatch):
    def fake_upload(*args, **kwargs):
        raise CloudinaryError("quota exceeded")

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    with pytest.raises(ImageHostError):
        upload_images([storage("a.jpg")])


def test_destroy_calls_host_per_filename(monkeypatch):
    destroyed = []
    monkeypatch.setattr(cloudinary.uploader, "destroy", lambda public_id: destroyed.append(public_id))
    destroy_images(["ToiletFinder/a", "ToiletFinder/b"])
    assert destroyed == ["ToiletFinder/a", "ToiletFinder/b"]


def test_destroy_failure_reports_what_was_already_removed(monkeypatch):
    def fake_destroy(public_id):
        if public_id == "ToiletFinder/b":
            raise CloudinaryError("rate limited")

    monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)
    with pytest.raises(ImageHostError) as excinfo:
        destroy_images(["ToiletFinder/a", "ToiletFinder/b", "ToiletFinder/c"])
    assert excinfo.value.destroyed == ["ToiletFinder/a"]


def test_remove_images_keeps_order_and_unlisted_entries():
    images = [
        {"url": "u1", "filename": "a"},
        {"url": "u2", "filename": "b"},
        {"url": "u3", "filename": "c"},
    ]
    assert remove_images(images, ["a", "c", "zzz"]) == [{"url": "u2", "filename": "b"}]
    assert remove_images(images, []) == images
