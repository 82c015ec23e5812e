"""Unit tests for CLI commands."""

from unittest.mock import patch

import pytest
import typer
from typer.testing import CliRunner

from socialsync.cli import app
from socialsync.errors import BackendError

runner = CliRunner()


@pytest.fixture
def cli_backend(social_graph):
    """Route every CLI command to the seeded fake backend."""
    with patch("socialsync.cli.AsyncBackendClient", return_value=social_graph):
        yield social_graph


def invoke(*args):
    result = runner.invoke(app, list(args))
    if result.exit_code != 0:
        print(f"stdout: {result.stdout}")
        if result.exception:
            print(f"exception: {result.exception}")
    return result


class TestCLICommands:
    """Tests for CLI commands."""

    def test_cli_app_exists(self):
        assert isinstance(app, typer.Typer)

    def test_verify_command_success(self, cli_backend):
        result = invoke("verify")

        assert result.exit_code == 0
        assert "Connection successful" in result.stdout
        assert "user-1" in result.stdout
        assert cli_backend.closed

    def test_verify_command_failure(self, cli_backend):
        cli_backend.fail_on("profiles", "select", BackendError("Invalid API key", status=401))

        result = invoke("verify")

        assert result.exit_code == 1
        assert "Connection failed" in result.stdout
        assert cli_backend.closed

    def test_password_sign_in(self, cli_backend):
        result = invoke("--email", "user-2@example.com", "--password", "secret", "verify")

        assert result.exit_code == 0
        assert cli_backend.user_id == "user-2"

    def test_feed_command(self, cli_backend):
        result = invoke("feed", "--page-size", "2", "--pages", "2")

        assert result.exit_code == 0
        assert "@ada" in result.stdout
        assert "@bob" in result.stdout
        assert len(cli_backend.calls_to("posts", "select")) == 2

    def test_post_command(self, cli_backend):
        result = invoke("post", "Launch day #Python")

        assert result.exit_code == 0
        assert "Posted" in result.stdout
        assert "#python" in result.stdout
        assert any(r["content"] == "Launch day #Python" for r in cli_backend.tables["posts"])

    def test_post_with_image(self, cli_backend, tmp_path):
        image = tmp_path / "cat.png"
        image.write_bytes(b"\x89PNG" + b"\x00" * 32)

        result = invoke("post", "Cat", "--image", str(image))

        assert result.exit_code == 0
        created = cli_backend.tables["posts"][-1]
        assert created["image_url"].startswith("https://project.example.co/storage/v1/object/public/post-images/")

    def test_comments_command(self, cli_backend):
        result = invoke("comments", "post-a")

        assert result.exit_code == 0
        assert "2 comments" in result.stdout
        assert "@bob" in result.stdout

    def test_comments_reply(self, cli_backend):
        result = invoke("comments", "post-a", "--message", "Welcome", "--reply-to", "c1")

        assert result.exit_code == 0
        assert "3 comments" in result.stdout
        assert cli_backend.tables["post_comments"][-1]["parent_comment_id"] == "c1"

    def test_search_command(self, cli_backend):
        result = invoke("search", "bob")

        assert result.exit_code == 0
        assert "@bob" in result.stdout

    def test_notifications_mark_read(self, cli_backend):
        cli_backend.seed("notifications", user_id="user-1", type="like", actor_id="user-2")

        result = invoke("notifications", "--mark-read")

        assert result.exit_code == 0
        assert "1 unread" in result.stdout
        assert all(r["read"] for r in cli_backend.tables["notifications"])

    def test_inbox_send(self, cli_backend):
        cli_backend.seed("conversations", id="conv-1")
        cli_backend.seed("conversation_participants", conversation_id="conv-1", user_id="user-1")
        cli_backend.seed("conversation_participants", conversation_id="conv-1", user_id="user-2")

        result = invoke("inbox", "--conversation", "conv-1", "--send", "hello bob")

        assert result.exit_code == 0
        assert "hello bob" in result.stdout

        listing = invoke("inbox")
        assert listing.exit_code == 0
        assert "conv-1" in listing.stdout

    def test_hashtag_command(self, cli_backend):
        result = invoke("hashtag", "#nothing")

        assert result.exit_code == 0
        assert "#nothing (0 posts)" in result.stdout

    def test_profile_command(self, cli_backend):
        result = invoke("profile", "ada")

        assert result.exit_code == 0
        assert "Ada Lovelace" in result.stdout
        assert "followers" in result.stdout

    def test_profile_unknown(self, cli_backend):
        result = invoke("profile", "nobody")

        assert result.exit_code == 1
        assert "No user named @nobody" in result.stdout

    def test_upload_command(self, cli_backend, tmp_path):
        image = tmp_path / "avatar.jpg"
        image.write_bytes(b"\xff\xd8\xff" + b"\x00" * 32)

        result = invoke("upload", str(image), "--bucket", "avatars")

        assert result.exit_code == 0
        assert "Uploaded" in result.stdout
        assert cli_backend.uploads[0]["bucket"] == "avatars"

    def test_upload_rejects_non_image(self, cli_backend, tmp_path):
        doc = tmp_path / "notes.txt"
        doc.write_text("hello")

        result = invoke("upload", str(doc))

        assert result.exit_code == 1
        assert "Upload failed" in result.stdout
        assert cli_backend.uploads == []

    def test_metrics_command(self):
        result = invoke("metrics")

        assert result.exit_code == 0
