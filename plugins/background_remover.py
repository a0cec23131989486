"""
plugins/background_remover.py
------------------------------
Metadata and default configuration of the Background Remover plugin.
"""

from models.plugin import PluginRecord

PLUGIN_ID = "background-remover"

OUTPUT_FORMATS = ("png", "jpg", "webp")

DEFAULT_CONFIG = {
    "max_file_size": 10 * 1024 * 1024,  # 10MB
    "allowed_formats": ["jpg", "jpeg", "png", "webp"],
    "output_format": "png",
}

# Bounds accepted by the admin settings command; Telegram bots cannot
# download files over 20MB
MAX_FILE_SIZE_MB_RANGE = (1, 20)

ROUTES = [
    {"command": "remove-background", "trigger": "photo/document", "authenticated": True},
    {"command": "bgstatus", "trigger": "/bgstatus"},
    {"command": "bgstats", "trigger": "/bgstats"},
    {"command": "bgsettings", "trigger": "/bgsettings", "admin": True},
]


def plugin_record() -> PluginRecord:
    """The record mirrored into the plugins table at startup."""
    return PluginRecord(
        id=PLUGIN_ID,
        name="Background Remover",
        version="1.0.0",
        author="BgBot Team",
        description="Remove background from images using AI",
        config=dict(DEFAULT_CONFIG),
        dependencies=["requests", "Pillow"],
        routes=ROUTES,
    )
