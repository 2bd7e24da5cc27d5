"""Tests for settings loading and configuration-driven wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from pydantic import ValidationError

from standby.config.settings import (
    DestinationMode,
    ReplicationSettings,
    StandbySettings,
    TransferMode,
    load_settings,
)
from standby.core.errors import ConfigurationError
from standby.replication.channels import ArchiveStreamChannel, NetcatStreamChannel, build_channel
from standby.runtime.factory import build_destination
from standby.runtime.remote import RemoteDestination


class TestLoadSettings:

    def test_defaults_without_file(self):
        settings = load_settings(None)

        assert settings.server.port == 8080
        assert settings.replication.transfer_mode is TransferMode.ARCHIVE
        assert settings.monitor.failure_threshold == 3
        assert settings.monitor.check_interval == 10.0

    def test_missing_file_uses_defaults(self, tmp_path: Path):
        assert load_settings(tmp_path / "absent.yaml") == StandbySettings()

    def test_yaml_overrides_sections(self, tmp_path: Path):
        config_file = tmp_path / "standby.yaml"
        config_file.write_text(
            "replication:\n"
            "  transfer_mode: netcat\n"
            "  transfer_port: 7000\n"
            "monitor:\n"
            "  failure_threshold: 5\n"
        )

        settings = load_settings(config_file)

        assert settings.replication.transfer_mode is TransferMode.NETCAT
        assert settings.replication.transfer_port == 7000
        assert settings.replication.helper_image == "alpine:latest"
        assert settings.monitor.failure_threshold == 5
        assert settings.server.port == 8080

    def test_malformed_yaml_falls_back(self, tmp_path: Path):
        config_file = tmp_path / "standby.yaml"
        config_file.write_text("server: [unclosed\n")

        assert load_settings(config_file) == StandbySettings()

    def test_non_mapping_falls_back(self, tmp_path: Path):
        config_file = tmp_path / "standby.yaml"
        config_file.write_text("- just\n- a list\n")

        assert load_settings(config_file) == StandbySettings()

    @pytest.mark.parametrize(
        "content",
        [
            "server:\n  port: abc\n",
            "monitor:\n  failure_threshold: 0\n",
            "replication:\n  transfer_mode: carrier-pigeon\n",
        ],
    )
    def test_invalid_values_fall_back(self, tmp_path: Path, content: str):
        config_file = tmp_path / "standby.yaml"
        config_file.write_text(content)

        assert load_settings(config_file) == StandbySettings()

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            ReplicationSettings(transfer_timeout=0)


class TestWiring:

    def test_archive_channel_by_default(self, source_docker, destination):
        channel = build_channel(ReplicationSettings(), source_docker, destination)

        assert isinstance(channel, ArchiveStreamChannel)

    def test_netcat_channel_when_configured(self, source_docker, destination):
        settings = ReplicationSettings(transfer_mode="netcat", transfer_port=7000)

        channel = build_channel(settings, source_docker, destination)

        assert isinstance(channel, NetcatStreamChannel)
        assert channel.port == 7000

    async def test_remote_mode_builds_agent_delegate(self):
        settings = ReplicationSettings(destination_mode=DestinationMode.REMOTE)

        destination = await build_destination("http://10.0.0.2:8080", settings)

        assert isinstance(destination, RemoteDestination)
        assert destination.hostname == "10.0.0.2"
        await destination.close()

    @pytest.mark.parametrize("address", ["", "10.0.0.2", "not a url"])
    async def test_unparseable_destination(self, address):
        with pytest.raises(ConfigurationError):
            await build_destination(address, ReplicationSettings())
