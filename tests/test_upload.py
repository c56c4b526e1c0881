"""
Tests for the upload endpoint and its interplay with retrieval.
"""

import pytest

from avatar_host.store import POINTER_FILENAME


def _upload(client, user_id, headers, filename="photo.png", data=b"X", content_type="image/png"):
    return client.post(
        f"/upload/{user_id}",
        files={"file": (filename, data, content_type)},
        headers=headers,
    )


def _blobs(upload_dir):
    return sorted(p for p in upload_dir.iterdir() if p.is_file())


class TestUpload:

    def test_upload_then_get(self, client, auth_headers):
        """Scenario A: upload photo.png, then fetch it without credentials."""
        r = _upload(client, "alice", auth_headers, data=b"X")

        assert r.status_code == 200
        assert r.json() == {"status": "success", "path": "/avatars/alice"}

        r = client.get("/avatars/alice")
        assert r.status_code == 200
        assert r.content == b"X"
        assert r.headers["content-type"] == "image/png"

    def test_layout_on_disk(self, client, auth_headers, upload_dir):
        _upload(client, "alice", auth_headers, filename="me.gif", data=b"GIF")

        blobs = _blobs(upload_dir)
        assert len(blobs) == 1
        assert blobs[0].suffix == ".gif"
        assert blobs[0].read_bytes() == b"GIF"

        pointer = upload_dir / "alice" / POINTER_FILENAME
        assert pointer.read_text() == blobs[0].name

    def test_latest_upload_wins(self, client, auth_headers, upload_dir):
        for body in (b"one", b"two", b"three"):
            assert _upload(client, "alice", auth_headers, data=body).status_code == 200

        assert client.get("/avatars/alice").content == b"three"
        # Older blobs are kept, only the pointer moves
        assert len(_blobs(upload_dir)) == 3

    def test_users_are_independent(self, client, auth_headers):
        _upload(client, "alice", auth_headers, data=b"A")
        _upload(client, "bob", auth_headers, data=b"B")

        assert client.get("/avatars/alice").content == b"A"
        assert client.get("/avatars/bob").content == b"B"

    def test_missing_extension_defaults_to_jpg(self, client, auth_headers, upload_dir):
        r = _upload(client, "alice", auth_headers, filename="avatar", data=b"J")

        assert r.status_code == 200
        assert _blobs(upload_dir)[0].suffix == ".jpg"
        assert client.get("/avatars/alice").headers["content-type"] == "image/jpeg"

    def test_only_first_file_is_stored(self, client, auth_headers, upload_dir):
        r = client.post(
            "/upload/alice",
            files=[
                ("first", ("a.png", b"A", "image/png")),
                ("second", ("b.png", b"B", "image/png")),
            ],
            headers=auth_headers,
        )

        assert r.status_code == 200
        assert len(_blobs(upload_dir)) == 1
        assert client.get("/avatars/alice").content == b"A"

    def test_large_upload_within_cap(self, client, auth_headers):
        data = b"z" * (1024 * 1024)
        assert _upload(client, "alice", auth_headers, data=data).status_code == 200
        assert client.get("/avatars/alice").content == data


class TestUploadErrors:

    def test_no_file_field(self, client, auth_headers, upload_dir):
        """Scenario D: a multipart body without a file is rejected."""
        r = client.post("/upload/alice", data={"note": "hello"}, headers=auth_headers)

        assert r.status_code == 400
        assert _blobs(upload_dir) == []
        assert not (upload_dir / "alice").exists()

    def test_empty_body(self, client, auth_headers):
        r = client.post("/upload/alice", headers=auth_headers)

        assert r.status_code == 400
        assert r.json()["detail"] == "Invalid upload"

    def test_first_field_without_filename(self, client, auth_headers, upload_dir):
        r = client.post(
            "/upload/alice",
            data={"note": "hello"},
            files={"file": ("a.png", b"A", "image/png")},
            headers=auth_headers,
        )

        assert r.status_code == 400
        assert r.json()["detail"] == "No filename"
        assert _blobs(upload_dir) == []

    def test_too_large_keeps_previous_avatar(self, client, auth_headers, upload_dir):
        _upload(client, "alice", auth_headers, data=b"small")

        r = _upload(client, "alice", auth_headers, data=b"z" * (1024 * 1024 + 1))

        assert r.status_code == 413
        assert len(_blobs(upload_dir)) == 1
        assert client.get("/avatars/alice").content == b"small"

    @pytest.mark.parametrize("user_id", ["a%5Cb", "%2E%2E"])
    def test_unsafe_user_id(self, client, auth_headers, upload_dir, user_id):
        r = _upload(client, user_id, auth_headers)

        assert r.status_code == 400
        assert r.json()["detail"] == "Invalid user id"
        assert _blobs(upload_dir) == []

    def test_unauthenticated_upload_has_no_side_effects(self, client, upload_dir):
        """Scenario E."""
        for headers in (None, {"Authorization": "Bearer nope"}):
            r = _upload(client, "alice", headers)
            assert r.status_code == 401

        assert list(upload_dir.iterdir()) == []

    def test_pointer_write_failure_is_500(self, client, auth_headers, upload_dir):
        # A plain file where the user's directory should be
        (upload_dir / "alice").write_bytes(b"")

        r = _upload(client, "alice", auth_headers)

        assert r.status_code == 500
        assert r.json()["detail"] == "Cannot save avatar mapping"
        # The orphaned blob is removed
        assert [p.name for p in _blobs(upload_dir)] == ["alice"]
