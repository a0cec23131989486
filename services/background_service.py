"""
services/background_service.py
-------------------------------
Business logic of the Background Remover plugin.
Orchestrates validation, the remove.bg client and the repositories.
"""

import io
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from PIL import Image, UnidentifiedImageError

from ai.removebg import RemoveBgError, remove_background
from db.connection import ConnectionPool
from models.image import ProcessedImage
from models.log_entry import LogEntry
from models.user import User
from plugins.background_remover import (
    DEFAULT_CONFIG,
    MAX_FILE_SIZE_MB_RANGE,
    OUTPUT_FORMATS,
    PLUGIN_ID,
)
from repositories.log_repo import LogRepository
from repositories.plugin_repo import PluginRepository, UserPluginRepository
from utils.logger import get_logger

logger = get_logger(__name__)

# Pillow format name -> file extensions it may arrive with
_PIL_FORMATS = {
    "JPEG": {"jpg", "jpeg"},
    "PNG": {"png"},
    "WEBP": {"webp"},
}

SUCCESS_PATTERN = "Background removed%"
FAILURE_PATTERN = "Background removal failed%"


class ImageValidationError(ValueError):
    """The uploaded file cannot be sent for processing."""


class PluginDisabledError(Exception):
    """The plugin is switched off globally or for this user."""


class SettingsError(ValueError):
    """An admin settings change was rejected."""


class BackgroundService:
    """
    Handles all business logic of background removal.

    Workflow:
        1. Resolve the effective config (plugin record + user override).
        2. Validate the upload.
        3. Send it to remove.bg.
        4. Save the result and append a log row.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        api_key: str,
        upload_dir: Path,
        timeout: float = 60,
    ):
        self.plugins = PluginRepository(pool)
        self.user_plugins = UserPluginRepository(pool)
        self.logs = LogRepository(pool)
        self.api_key = api_key
        self.output_dir = Path(upload_dir) / PLUGIN_ID
        self.timeout = timeout

    # ── CONFIG ────────────────────────────────────────────

    def effective_config(self, user_id: Optional[int] = None) -> dict[str, Any]:
        """
        Defaults, overlaid with the stored plugin config, overlaid with the
        user's override.

        Raises:
            PluginDisabledError: Plugin missing/disabled, or disabled by the user.
        """
        record = self.plugins.get(PLUGIN_ID)
        if record is None or not record.enabled:
            raise PluginDisabledError("Background Remover is currently disabled.")
        config = {**DEFAULT_CONFIG, **record.config}

        if user_id is not None:
            settings = self.user_plugins.get(user_id, PLUGIN_ID)
            if settings is not None:
                if not settings.enabled:
                    raise PluginDisabledError("You have turned Background Remover off. Use /bgon.")
                config.update(settings.config)
        return config

    # ── VALIDATION ────────────────────────────────────────

    @staticmethod
    def check_size(size: Optional[int], config: dict[str, Any]) -> None:
        """
        Reject an upload above the configured limit. An unknown size passes.

        Raises:
            ImageValidationError: With a user-facing message.
        """
        max_size = int(config["max_file_size"])
        if size is not None and size > max_size:
            raise ImageValidationError(
                f"File too large. Max size: {max_size / 1024 / 1024:g}MB"
            )

    @staticmethod
    def validate(filename: str, data: bytes, config: dict[str, Any]) -> str:
        """
        Check size, extension and actual content of an upload.

        Returns:
            The lower-case file extension.

        Raises:
            ImageValidationError: With a user-facing message.
        """
        if not data:
            raise ImageValidationError("No image uploaded")

        BackgroundService.check_size(len(data), config)

        allowed = [fmt.lower() for fmt in config["allowed_formats"]]
        ext = Path(filename).suffix.lower().lstrip(".")
        if ext not in allowed:
            raise ImageValidationError(
                f"Invalid file format. Allowed: {', '.join(allowed)}"
            )

        try:
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
                detected = img.format
        except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as e:
            logger.warning(f"Rejected unreadable upload '{filename}': {e}")
            raise ImageValidationError("File is not a valid image") from e

        if ext not in _PIL_FORMATS.get(detected, set()):
            raise ImageValidationError(
                f"File content ({detected}) does not match its extension (.{ext})"
            )
        return ext

    # ── PROCESSING ────────────────────────────────────────

    def remove_background(self, user: User, filename: str, data: bytes) -> ProcessedImage:
        """
        Remove the background of an uploaded image.

        Args:
            user: The requesting user.
            filename: Original file name.
            data: Image bytes.

        Returns:
            The processed image, already saved to disk.

        Raises:
            PluginDisabledError, ImageValidationError, RemoveBgError.
        """
        config = self.effective_config(user.id)
        self.validate(filename, data, config)
        output_format = config["output_format"]

        try:
            output = remove_background(
                data, filename, output_format, self.api_key, timeout=self.timeout
            )
        except RemoveBgError as e:
            self.logs.add(LogEntry(
                level="error",
                message=f"Background removal failed: {e}",
                user_id=user.id,
                metadata={"plugin_id": PLUGIN_ID, "filename": filename, "status_code": e.status_code},
            ))
            raise

        result = self._save(output, output_format)
        self.logs.add(LogEntry(
            level="info",
            message=f"Background removed: {filename}",
            user_id=user.id,
            metadata={
                "plugin_id": PLUGIN_ID,
                "filename": filename,
                "output": result.filename,
                "input_size": len(data),
                "output_size": result.size,
            },
        ))
        logger.info(f"Background removed for {user.username}: {filename} -> {result.filename}")
        return result

    def _save(self, data: bytes, output_format: str) -> ProcessedImage:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filename = f"bg-removed-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{output_format}"
        path = self.output_dir / filename
        path.write_bytes(data)
        return ProcessedImage(data=data, format=output_format, filename=filename, path=path)

    # ── STATUS & STATS ────────────────────────────────────

    def status(self) -> dict[str, Any]:
        """Plugin identity and the public part of its config."""
        record = self.plugins.get(PLUGIN_ID)
        if record is None:
            raise PluginDisabledError("Background Remover is not registered.")
        config = {**DEFAULT_CONFIG, **record.config}
        return {
            "plugin": record.name,
            "version": record.version,
            "enabled": record.enabled,
            "config": {
                "max_file_size": config["max_file_size"],
                "allowed_formats": config["allowed_formats"],
                "output_format": config["output_format"],
            },
        }

    def stats(self) -> dict[str, Any]:
        """Processed/failed counts and success rate, from the log table."""
        processed = self.logs.count_matching(SUCCESS_PATTERN, level="info")
        failed = self.logs.count_matching(FAILURE_PATTERN, level="error")
        total = processed + failed
        rate = f"{processed / total * 100:.0f}%" if total else "0%"
        return {"processed": processed, "failed": failed, "success_rate": rate}

    # ── SETTINGS ──────────────────────────────────────────

    def update_setting(self, key: str, value: str, changed_by: Optional[int] = None) -> dict[str, Any]:
        """
        Apply one admin setting given as text (as typed in a command).

        Keys:
            max_file_size: Megabytes, within MAX_FILE_SIZE_MB_RANGE.
            output_format: One of OUTPUT_FORMATS.
            enabled: 'on' or 'off'.

        Returns:
            The changes that were applied.

        Raises:
            SettingsError: Unknown key or invalid value.
        """
        key = key.lower()
        value = value.strip().lower()

        if key == "enabled":
            if value not in ("on", "off"):
                raise SettingsError("enabled must be 'on' or 'off'")
            if not self.plugins.set_enabled(PLUGIN_ID, value == "on"):
                raise SettingsError("Background Remover is not registered.")
            logger.info(f"Background Remover {'enabled' if value == 'on' else 'disabled'} by {changed_by}")
            return {"enabled": value == "on"}

        if key == "max_file_size":
            mb = self._int_in_range(value, MAX_FILE_SIZE_MB_RANGE, key)
            changes = {"max_file_size": mb * 1024 * 1024}
        elif key == "output_format":
            changes = {"output_format": self._output_format(value)}
        else:
            raise SettingsError(f"Unknown setting '{key}'")

        if self.plugins.update_config(PLUGIN_ID, changes, changed_by) is None:
            raise SettingsError("Background Remover is not registered.")
        return changes

    def set_user_enabled(self, user: User, enabled: bool) -> None:
        self.user_plugins.set_enabled(user.id, PLUGIN_ID, enabled)

    def set_user_output_format(self, user: User, output_format: str) -> dict[str, Any]:
        fmt = self._output_format(output_format.strip().lower())
        return self.user_plugins.set_config(user.id, PLUGIN_ID, {"output_format": fmt})

    @staticmethod
    def _int_in_range(value: str, bounds: tuple[int, int], key: str) -> int:
        low, high = bounds
        try:
            number = int(value)
        except ValueError as e:
            raise SettingsError(f"{key} must be a whole number") from e
        if not low <= number <= high:
            raise SettingsError(f"{key} must be between {low} and {high}")
        return number

    @staticmethod
    def _output_format(value: str) -> str:
        if value not in OUTPUT_FORMATS:
            raise SettingsError(f"Output format must be one of: {', '.join(OUTPUT_FORMATS)}")
        return value
