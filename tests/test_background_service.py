"""
Tests for BackgroundService with in-memory repositories and a patched
remove.bg client.
"""

import io

import pytest
from PIL import Image

from ai.removebg import RemoveBgError
from models.plugin import PluginRecord, UserPluginSettings
from models.user import User
from plugins.background_remover import DEFAULT_CONFIG, PLUGIN_ID, plugin_record
from services import background_service
from services.background_service import (
    FAILURE_PATTERN,
    SUCCESS_PATTERN,
    BackgroundService,
    ImageValidationError,
    PluginDisabledError,
    SettingsError,
)

USER = User(id=7, username="tg_1001")


def image_bytes(fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


class StubPlugins:
    def __init__(self, record):
        self.record = record
        self.updates = []

    def get(self, plugin_id):
        return self.record if self.record and self.record.id == plugin_id else None

    def set_enabled(self, plugin_id, enabled):
        if self.record is None:
            return False
        self.record.enabled = enabled
        return True

    def update_config(self, plugin_id, changes, changed_by=None):
        if self.record is None:
            return None
        self.updates.append((changes, changed_by))
        self.record.config = {**self.record.config, **changes}
        return self.record.config


class StubUserPlugins:
    def __init__(self):
        self.rows: dict[tuple, UserPluginSettings] = {}

    def get(self, user_id, plugin_id):
        return self.rows.get((user_id, plugin_id))

    def _row(self, user_id, plugin_id):
        return self.rows.setdefault((user_id, plugin_id), UserPluginSettings(user_id, plugin_id))

    def set_enabled(self, user_id, plugin_id, enabled):
        self._row(user_id, plugin_id).enabled = enabled

    def set_config(self, user_id, plugin_id, changes):
        row = self._row(user_id, plugin_id)
        row.config = {**row.config, **changes}
        return row.config


class StubLogs:
    def __init__(self):
        self.entries = []

    def add(self, entry, tx=None):
        self.entries.append(entry)
        return entry

    def count_matching(self, pattern, level=None):
        prefix = pattern.rstrip("%")
        return sum(
            1 for e in self.entries
            if e.message.startswith(prefix) and (level is None or e.level == level)
        )


@pytest.fixture
def api(monkeypatch):
    calls = []

    def fake_remove_background(data, filename, output_format, api_key, timeout=60):
        calls.append((filename, output_format, api_key))
        return b"processed-" + output_format.encode()

    monkeypatch.setattr(background_service, "remove_background", fake_remove_background)
    return calls


@pytest.fixture
def service(tmp_path) -> BackgroundService:
    svc = BackgroundService(pool=None, api_key="key-123", upload_dir=tmp_path)
    svc.plugins = StubPlugins(plugin_record())
    svc.user_plugins = StubUserPlugins()
    svc.logs = StubLogs()
    return svc


# ── validation ────────────────────────────────────────────


def test_validate_accepts_matching_image():
    assert BackgroundService.validate("photo.JPG", image_bytes("JPEG"), DEFAULT_CONFIG) == "jpg"
    assert BackgroundService.validate("cut.png", image_bytes("PNG"), DEFAULT_CONFIG) == "png"


def test_validate_rejects_empty_upload():
    with pytest.raises(ImageValidationError, match="No image uploaded"):
        BackgroundService.validate("a.png", b"", DEFAULT_CONFIG)


def test_validate_rejects_oversized_file():
    config = {**DEFAULT_CONFIG, "max_file_size": 1024 * 1024}

    with pytest.raises(ImageValidationError, match="Max size: 1MB"):
        BackgroundService.validate("a.png", b"\0" * (1024 * 1024 + 1), config)


def test_check_size_uses_the_reported_size():
    config = {**DEFAULT_CONFIG, "max_file_size": 1024 * 1024}

    BackgroundService.check_size(1024 * 1024, config)
    BackgroundService.check_size(None, config)
    with pytest.raises(ImageValidationError, match="Max size: 1MB"):
        BackgroundService.check_size(1024 * 1024 + 1, config)


def test_validate_rejects_unlisted_extension():
    with pytest.raises(ImageValidationError, match="Allowed: jpg, jpeg, png, webp"):
        BackgroundService.validate("a.gif", image_bytes("GIF"), DEFAULT_CONFIG)


def test_validate_rejects_non_image_content():
    with pytest.raises(ImageValidationError, match="not a valid image"):
        BackgroundService.validate("a.png", b"#!/bin/sh\nrm -rf /\n", DEFAULT_CONFIG)


def test_validate_rejects_mismatched_content():
    with pytest.raises(ImageValidationError, match=r"\(PNG\) does not match .*\(\.jpg\)"):
        BackgroundService.validate("a.jpg", image_bytes("PNG"), DEFAULT_CONFIG)


# ── effective config ──────────────────────────────────────


def test_user_override_wins_over_plugin_config(service):
    service.plugins.record.config["output_format"] = "jpg"
    service.set_user_output_format(USER, "WEBP")

    assert service.effective_config(USER.id)["output_format"] == "webp"
    assert service.effective_config()["output_format"] == "jpg"


def test_globally_disabled_plugin_is_refused(service, api):
    service.plugins.record.enabled = False

    with pytest.raises(PluginDisabledError):
        service.remove_background(USER, "a.png", image_bytes())

    assert api == []


def test_user_disabled_plugin_is_refused(service):
    service.set_user_enabled(USER, False)

    with pytest.raises(PluginDisabledError, match="/bgon"):
        service.effective_config(USER.id)


def test_unregistered_plugin_is_refused(service):
    service.plugins.record = None

    with pytest.raises(PluginDisabledError):
        service.effective_config(USER.id)


# ── processing ────────────────────────────────────────────


def test_remove_background_saves_file_and_logs(service, api, tmp_path):
    result = service.remove_background(USER, "cat.png", image_bytes())

    assert api == [("cat.png", "png", "key-123")]
    assert result.data == b"processed-png"
    assert result.path.parent == tmp_path / PLUGIN_ID
    assert result.path.read_bytes() == b"processed-png"
    assert result.filename.startswith("bg-removed-") and result.filename.endswith(".png")

    (entry,) = service.logs.entries
    assert entry.level == "info"
    assert entry.message == "Background removed: cat.png"
    assert entry.user_id == USER.id
    assert entry.metadata["output_size"] == len(b"processed-png")


def test_remove_background_uses_configured_output_format(service, api):
    service.set_user_output_format(USER, "jpg")

    result = service.remove_background(USER, "cat.png", image_bytes())

    assert result.format == "jpg"
    assert result.filename.endswith(".jpg")


def test_api_failure_is_logged_and_reraised(service, monkeypatch, tmp_path):
    def failing(*args, **kwargs):
        raise RemoveBgError("Failed to process image with remove.bg API: Insufficient credits", 402)

    monkeypatch.setattr(background_service, "remove_background", failing)

    with pytest.raises(RemoveBgError):
        service.remove_background(USER, "cat.png", image_bytes())

    (entry,) = service.logs.entries
    assert entry.level == "error"
    assert entry.message.startswith("Background removal failed")
    assert entry.metadata["status_code"] == 402
    assert not (tmp_path / PLUGIN_ID).exists()


def test_invalid_upload_never_reaches_the_api(service, api):
    with pytest.raises(ImageValidationError):
        service.remove_background(USER, "notes.txt", b"hello")

    assert api == []
    assert service.logs.entries == []


# ── status & stats ────────────────────────────────────────


def test_stats_counts_successes_and_failures(service, api, monkeypatch):
    for name in ("a.png", "b.png", "c.png"):
        service.remove_background(USER, name, image_bytes())

    def failing(*args, **kwargs):
        raise RemoveBgError("boom")

    monkeypatch.setattr(background_service, "remove_background", failing)
    with pytest.raises(RemoveBgError):
        service.remove_background(USER, "d.png", image_bytes())

    assert service.stats() == {"processed": 3, "failed": 1, "success_rate": "75%"}
    assert SUCCESS_PATTERN.endswith("%") and FAILURE_PATTERN.endswith("%")


def test_stats_without_history(service):
    assert service.stats() == {"processed": 0, "failed": 0, "success_rate": "0%"}


def test_status_reports_public_config(service):
    status = service.status()

    assert status["plugin"] == "Background Remover"
    assert status["version"] == "1.0.0"
    assert status["enabled"] is True
    assert set(status["config"]) == {"max_file_size", "allowed_formats", "output_format"}


# ── admin settings ────────────────────────────────────────


def test_update_max_file_size_is_stored_in_bytes(service):
    assert service.update_setting("max_file_size", "15", changed_by=1) == {"max_file_size": 15 * 1024 * 1024}
    assert service.plugins.updates == [({"max_file_size": 15 * 1024 * 1024}, 1)]


@pytest.mark.parametrize("key,value", [
    ("max_file_size", "0"),
    ("max_file_size", "21"),
    ("max_file_size", "51"),
    ("max_file_size", "ten"),
    ("output_format", "gif"),
    ("enabled", "maybe"),
    ("quality", "90"),
])
def test_invalid_settings_are_rejected(service, key, value):
    with pytest.raises(SettingsError):
        service.update_setting(key, value)

    assert service.plugins.updates == []


def test_toggle_plugin_globally(service):
    assert service.update_setting("enabled", "off") == {"enabled": False}
    assert service.plugins.record.enabled is False

    service.update_setting("enabled", "ON")
    assert service.plugins.record.enabled is True


def test_settings_on_unregistered_plugin(service):
    service.plugins.record = None

    with pytest.raises(SettingsError, match="not registered"):
        service.update_setting("output_format", "jpg")


@pytest.mark.parametrize("value", ["on", "off"])
def test_toggle_on_unregistered_plugin(service, value):
    service.plugins.record = None

    with pytest.raises(SettingsError, match="not registered"):
        service.update_setting("enabled", value)


def test_plugin_record_defaults():
    record = plugin_record()

    assert isinstance(record, PluginRecord)
    assert record.config == DEFAULT_CONFIG
    assert record.config is not DEFAULT_CONFIG
