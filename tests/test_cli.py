"""Tests for the gallerystore server command line."""

import logging

import pytest
import yaml

from gallerystore import cli
from gallerystore.config import GalleryStoreConfig
from gallerystore.logging_config import SecretFilter


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    for var in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_REGION", "S3_BUCKET_NAME"):
        monkeypatch.delenv(var, raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    SecretFilter.clear_secrets()


def _config_file(tmp_path, storage: dict) -> str:
    path = tmp_path / "gallerystore.yaml"
    data = {
        "storage": {"s3": storage},
        "metadata": {"engine": "memory"},
        "observability": {"metrics": False},
    }
    path.write_text(yaml.dump(data))
    return str(path)


COMPLETE = {"bucket": "b", "access_key_id": "a", "secret_access_key": "s"}


class TestApplyCliOverrides:
    def test_only_given_options_override(self):
        args = cli.parse_args(["--port", "9000", "--log-format", "json"])
        config = cli.apply_cli_overrides(GalleryStoreConfig(), args)
        assert config.server.port == 9000
        assert config.server.log_format == "json"
        assert config.server.host == "0.0.0.0"
        assert config.server.log_level == "INFO"

    def test_defaults(self):
        args = cli.parse_args([])
        assert str(args.config) == "gallerystore.yaml"
        assert args.check_config is False


class TestMain:
    def test_missing_config_file(self, tmp_path, capsys):
        assert cli.main(["--config", str(tmp_path / "missing.yaml")]) == 1
        assert "config file not found" in capsys.readouterr().err

    def test_missing_credentials(self, tmp_path):
        assert cli.main(["--config", _config_file(tmp_path, {"bucket": "b"})]) == 1

    def test_check_config_does_not_serve(self, tmp_path, monkeypatch):
        def fail_run(*args, **kwargs):
            raise AssertionError("server must not start")

        monkeypatch.setattr(cli.uvicorn, "run", fail_run)
        assert cli.main(["--config", _config_file(tmp_path, COMPLETE), "--check-config"]) == 0

    def test_starts_uvicorn_with_overrides(self, tmp_path, monkeypatch):
        calls = {}

        def fake_run(app, **kwargs):
            calls["app"] = app
            calls.update(kwargs)

        monkeypatch.setattr(cli.uvicorn, "run", fake_run)

        rc = cli.main(
            ["--config", _config_file(tmp_path, COMPLETE), "--port", "9123", "--log-level", "DEBUG"]
        )

        assert rc == 0
        assert calls["port"] == 9123
        assert calls["log_level"] == "debug"
        assert calls["timeout_graceful_shutdown"] == 30
        assert calls["app"].state.config.storage.bucket == "b"

    def test_config_secrets_redacted_from_logs(self, tmp_path):
        storage = {**COMPLETE, "secret_access_key": "wJalrXUtnFEMI-secret"}
        assert cli.main(["--config", _config_file(tmp_path, storage), "--check-config"]) == 0
        assert SecretFilter.redact("key wJalrXUtnFEMI-secret") == "key [REDACTED]"
