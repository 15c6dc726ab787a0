"""
Configuration and wire models for the widget hub.

Everything that crosses a channel is a plain dict produced by
``model_dump()`` and read back with ``model_validate()``.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SharedSettings(BaseModel):
    """Read-only settings handed identically to every widget on handshake."""

    model_config = ConfigDict(frozen=True, extra="allow")

    host_url: str

    @classmethod
    def build(cls, host_url: str, extensions: Mapping[str, Any] | None = None) -> "SharedSettings":
        """Merge caller extensions over the host url."""
        return cls.model_validate({"host_url": host_url, **(extensions or {})})


class ManagerConfig(BaseModel):
    """Construction options for a WidgetManager."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    local: str  # Relay resource identifier
    container: str = "body"  # Default mount point
    host_url: str = "about:blank"
    widget_settings: dict[str, Any] = Field(default_factory=dict)
    handshake_timeout: float = Field(default=10.0, gt=0)


class WidgetOptions(BaseModel):
    """Per-widget options passed to ``add_widget``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    container: str | None = None


class HandshakeResponse(BaseModel):
    """A widget's answer to the ``initialize`` call."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    success: bool
    subscriptions: list[str] = Field(default_factory=list)


class WidgetEvent(BaseModel):
    """Payload of the initialized/failed notifications."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    reason: str | None = None
