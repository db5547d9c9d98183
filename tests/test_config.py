"""Tests for configuration and endpoint derivation."""

from __future__ import annotations

import json

from printer_client.config import ClientConfig
from printer_client.state import DeviceState
from printer_client.urls import Urls


class TestClientConfig:
    def test_defaults(self):
        cfg = ClientConfig()
        assert cfg.client_retry_interval == 15.0
        assert cfg.subscription_check_interval == 60.0
        assert cfg.firmware_version

    def test_load_save(self, tmp_path):
        cfg = ClientConfig(server_url="https://print.example.com", client_retry_interval=3.0)
        path = tmp_path / "config.json"
        cfg.save(path)

        loaded = ClientConfig.load(path)
        assert loaded.server_url == "https://print.example.com"
        assert loaded.client_retry_interval == 3.0

    def test_save_writes_only_overrides(self, tmp_path):
        cfg = ClientConfig(server_url="https://print.example.com", command_pipe="/run/fw.pipe")
        path = tmp_path / "config.json"
        cfg.save(path)

        assert json.loads(path.read_text()) == {
            "command_pipe": "/run/fw.pipe",
            "server_url": "https://print.example.com",
        }
        assert ClientConfig.load(path) == cfg

    def test_save_defaults_is_empty(self, tmp_path):
        path = tmp_path / "config.json"
        ClientConfig().save(path)
        assert json.loads(path.read_text()) == {}

    def test_load_missing_file(self, tmp_path):
        cfg = ClientConfig.load(tmp_path / "nonexistent.json")
        assert cfg.server_url == ClientConfig().server_url

    def test_load_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"server_url": "http://x", "unknown_key": 42}))
        cfg = ClientConfig.load(path)
        assert cfg.server_url == "http://x"
        assert not hasattr(cfg, "unknown_key")


class TestUrls:
    def _urls(self, server_url="http://print.test/", printer_id="d1"):
        return Urls(ClientConfig(server_url=server_url), DeviceState(printer_id=printer_id))

    def test_endpoints(self):
        urls = self._urls()
        assert urls.registration_endpoint == "http://print.test/api/v1/print/printers"
        assert urls.status_endpoint == "http://print.test/api/v1/print/printers/status"
        assert urls.health_check_endpoint == "http://print.test/api/v1/print/printers/health_check"
        assert urls.command_ack_endpoint == "http://print.test/api/v1/print/printers/acknowledge"

    def test_client_endpoint(self):
        assert self._urls("http://print.test").client_endpoint == "ws://print.test/faye"
        assert self._urls("https://print.test").client_endpoint == "wss://print.test/faye"

    def test_channels_follow_printer_id(self):
        state = DeviceState(printer_id="d1")
        urls = Urls(ClientConfig(), state)
        assert urls.command_channel == "/printers/d1/command"

        state.update(printer_id="d2")
        assert urls.registration_channel == "/printers/d2/users"
        assert urls.command_channel == "/printers/d2/command"
