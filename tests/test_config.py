"""
Tests for configuration management and logging helpers

Tests cover:
- Configuration loading and defaults
- Invalid config files
- Sync setting validation
- Sensitive data masking in logs
"""
import json
import logging

import pytest
from pydantic import ValidationError

from mailsync.utils.config import AppConfig, ConfigManager, SyncConfig
from mailsync.utils.errors import InvalidConfigError
from mailsync.utils.logging import (
    LogManager,
    SensitiveDataFilter,
    SensitiveDataMasker,
    get_logger,
    log_event,
)


class TestConfigManagerInitialization:
    """Tests for ConfigManager initialization"""

    def test_creates_default_file(self, tmp_path):
        """Test a missing config file is written with defaults"""
        path = tmp_path / "config.json"
        manager = ConfigManager(path)

        assert path.exists()
        assert manager.config == AppConfig()
        assert json.loads(path.read_text())["sync"]["idle_mailbox"] == "INBOX"

    def test_singleton(self, tmp_path):
        first = ConfigManager(tmp_path / "config.json")
        assert ConfigManager() is first

    def test_loads_existing_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"sync": {"poll_interval": 15, "idle_on_connect": False}}))

        config = ConfigManager(path).config

        assert config.sync.poll_interval == 15
        assert config.sync.idle_on_connect is False
        assert config.sync.reconnect_max_delay == 30.0

    def test_save_round_trips(self, tmp_path):
        path = tmp_path / "config.json"
        manager = ConfigManager(path)
        manager.config.sync.fetch_batch_size = 10
        manager.save()

        ConfigManager.reset()
        assert ConfigManager(path).config.sync.fetch_batch_size == 10

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(InvalidConfigError):
            ConfigManager(path)

    def test_schema_mismatch(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"sync": {"poll_interval": -1}}))

        with pytest.raises(InvalidConfigError):
            ConfigManager(path)


class TestSyncConfig:
    """Tests for sync setting defaults and validation"""

    def test_defaults(self):
        config = SyncConfig()
        assert config.reconnect_base_delay == 1.0
        assert config.reconnect_max_delay == 30.0
        assert config.max_reconnect_attempts == 5
        assert config.test_connection_timeout == 10.0
        assert config.implicit_tls_ports == [993]

    @pytest.mark.parametrize(
        "field", ["reconnect_base_delay", "connect_timeout", "idle_timeout", "poll_interval"]
    )
    def test_non_positive_durations_rejected(self, field):
        with pytest.raises(ValidationError):
            SyncConfig(**{field: 0})

    @pytest.mark.parametrize(
        "field", ["fetch_batch_size", "max_attachment_bytes", "attachment_chunk_size"]
    )
    def test_non_positive_sizes_rejected(self, field):
        with pytest.raises(ValidationError):
            SyncConfig(**{field: 0})


class TestSensitiveDataMasking:
    """Tests for log masking"""

    def test_password_masked(self):
        masker = SensitiveDataMasker()
        assert masker.mask_string("login password=hunter2") == "login password=[REDACTED]"

    def test_email_partially_masked(self):
        masker = SensitiveDataMasker()
        assert masker.mask_string("connected alice@example.com") == "connected a***@e***"

    def test_dict_fields_masked(self):
        masker = SensitiveDataMasker()
        masked = masker.mask_dict({"password_encrypted": "gAAAA", "nested": {"token": "x"}, "n": 3})
        assert masked == {
            "password_encrypted": "[REDACTED]",
            "nested": {"token": "[REDACTED]"},
            "n": 3,
        }

    def test_filter_masks_extra(self):
        record = logging.LogRecord("mailsync", logging.INFO, "", 0, "secret: abc", (), None)
        record.password = "hunter2"

        assert SensitiveDataFilter().filter(record) is True
        assert record.msg == "secret: [REDACTED]"
        assert record.password == "[REDACTED]"


class TestLogManager:
    """Tests for handler installation"""

    @pytest.fixture
    def restore_handlers(self):
        root = logging.getLogger("mailsync")
        saved = list(root.handlers)
        yield
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved

    def test_events_file_only_gets_events(self, tmp_path, restore_handlers):
        manager = LogManager("INFO", log_dir=tmp_path)

        get_logger("tests").info("plain record")
        log_event("new_mail", "2 new message(s)", account_id="a1", password="hunter2")
        for handler in manager.root_logger.handlers:
            handler.flush()

        events = [json.loads(line) for line in (tmp_path / "events.log").read_text().splitlines()]
        assert [e["message"] for e in events] == ["2 new message(s)"]
        assert events[0]["context"]["event_type"] == "new_mail"
        assert events[0]["context"]["password"] == "[REDACTED]"

        app_lines = (tmp_path / "app.log").read_text().splitlines()
        assert len(app_lines) == 2

    def test_invalid_level(self, tmp_path, restore_handlers):
        with pytest.raises(ValueError):
            LogManager("LOUD", log_to_files=False)

    def test_logger_names(self):
        assert get_logger("core.sync").name == "mailsync.core.sync"
        assert get_logger("mailsync.cli").name == "mailsync.cli"
        assert get_logger().name == "mailsync"
