"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

import run
from teletext_archive.processing import RenderBackendUnavailableError


def _setup_serve(monkeypatch, tmp_path):
    captured = {}

    config = SimpleNamespace(archive_root=tmp_path / "teletext", log_root=tmp_path / "logs")
    monkeypatch.setattr(run, "initialize_app", lambda: config)
    monkeypatch.setattr(run, "_prepare_logging", lambda log_root: captured.setdefault("log_root", log_root))

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(app_config):
        captured["app_config"] = app_config
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    return captured, dummy_app, config


def test_serve_builds_uvicorn_server(monkeypatch, tmp_path):
    captured, dummy_app, config = _setup_serve(monkeypatch, tmp_path)

    run.serve(host="127.0.0.1", port=9000)

    assert captured["app"] is dummy_app
    assert captured["app_config"] is config
    assert captured["config_kwargs"] == {"host": "127.0.0.1", "port": 9000, "log_config": None}
    assert captured["server_run"] is True
    assert dummy_app.state.server is captured["server_instance"]
    assert captured["log_root"] == config.log_root


def test_cli_without_command_serves_on_default_port(monkeypatch, tmp_path):
    captured, _, _ = _setup_serve(monkeypatch, tmp_path)

    result = CliRunner().invoke(run.cli, [])

    assert result.exit_code == 0, result.output
    assert captured["config_kwargs"]["port"] == run.DEFAULT_PORT
    assert captured["config_kwargs"]["host"] == run.DEFAULT_HOST


@pytest.fixture()
def cli_env(monkeypatch, temp_config, make_backend):
    backends = []

    def backend_factory(settings):
        backend = make_backend()
        backends.append(backend)
        return backend

    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda log_root: None)
    monkeypatch.setattr(run, "PlaywrightRenderBackend", backend_factory)
    return SimpleNamespace(config=temp_config, backends=backends)


def test_thumbnails_command_generates_missing(cli_env, make_pages):
    folder = cli_env.config.archive_root / "Channels"
    make_pages(folder, ["100", "101", "102"])
    (folder / "100.png").write_bytes(b"existing")

    result = CliRunner().invoke(run.cli, ["thumbnails", "Channels"])

    assert result.exit_code == 0, result.output
    assert "Generated 2 of 2 thumbnails" in result.output
    assert (folder / "101.png").exists()
    assert (folder / "100.png").read_bytes() == b"existing"
    assert cli_env.backends[0].closed


def test_thumbnails_command_regenerates_everything(cli_env, make_pages):
    folder = cli_env.config.archive_root / "Channels"
    make_pages(folder, ["100", "101"])
    (folder / "100.png").write_bytes(b"existing")

    result = CliRunner().invoke(run.cli, ["thumbnails", "Channels", "--regenerate"])

    assert result.exit_code == 0, result.output
    assert "Generated 2 of 2 thumbnails" in result.output
    assert (folder / "100.png").read_bytes() != b"existing"


def test_thumbnails_command_when_up_to_date(cli_env, make_pages):
    folder = cli_env.config.archive_root / "Channels"
    make_pages(folder, ["100"])
    (folder / "100.png").write_bytes(b"existing")

    result = CliRunner().invoke(run.cli, ["thumbnails", "Channels"])

    assert result.exit_code == 0, result.output
    assert "No thumbnails to generate" in result.output


@pytest.mark.parametrize("folder", ["../outside", "Missing"])
def test_thumbnails_command_rejects_bad_folders(cli_env, folder):
    result = CliRunner().invoke(run.cli, ["thumbnails", folder])

    assert result.exit_code == 2
    assert cli_env.backends == []


def test_thumbnails_command_exits_when_browser_unavailable(monkeypatch, cli_env, make_pages, make_backend):
    make_pages(cli_env.config.archive_root / "Channels", ["100"])
    error = RenderBackendUnavailableError("Unable to launch headless Chromium")
    monkeypatch.setattr(
        run,
        "PlaywrightRenderBackend",
        lambda settings: make_backend(failures={"100.html": error}),
    )

    result = CliRunner().invoke(run.cli, ["thumbnails", "Channels"])

    assert result.exit_code == 1
    assert "aborted" in result.output


def test_overview_command_runs_modern_ui(monkeypatch, cli_env):
    captured = {}

    class DummyUI:
        def __init__(self, archive_root, *, max_depth=None):
            captured["archive_root"] = archive_root
            captured["max_depth"] = max_depth

        def run(self):
            captured["ran"] = True

    monkeypatch.setattr(run, "ModernUI", DummyUI)

    result = CliRunner().invoke(run.cli, ["overview", "--depth", "2"])

    assert result.exit_code == 0, result.output
    assert captured == {
        "archive_root": cli_env.config.archive_root,
        "max_depth": 2,
        "ran": True,
    }
