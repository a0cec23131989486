"""
models/plugin.py
----------------
Domain models for plugin records and per-user plugin settings.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class PluginRecord:
    """
    Persisted mirror of a plugin's runtime metadata (plugins table).

    Attributes:
        id: Unique plugin identifier, e.g. 'background-remover'.
        name: Human readable name.
        version: Plugin version string.
        author: Optional author.
        description: Optional description.
        enabled: Global on/off switch.
        config: Free-form configuration document (JSONB).
        dependencies: Names of libraries the plugin relies on.
        routes: Operations the plugin exposes.
    """
    id: str
    name: str
    version: str
    author: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True
    config: dict[str, Any] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    routes: list[dict[str, Any]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UserPluginSettings:
    """A user's toggle and config override for one plugin (user_plugins table)."""
    user_id: int
    plugin_id: str
    enabled: bool = True
    config: dict[str, Any] = field(default_factory=dict)
