"""Configuration models for outlinekit."""

from typing import Optional

from pydantic import BaseModel, Field, HttpUrl


class GatewayConfig(BaseModel):
    """Connection settings for the block store."""

    endpoint: HttpUrl = Field(
        ...,
        description="Base URL of the block store HTTP API"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token sent with every request (if set)"
    )

    timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Per-request timeout in seconds"
    )

    model_config = {"frozen": True}


class EditorConfig(BaseModel):
    """Settings for the draft/commit discipline."""

    debounce_seconds: float = Field(
        default=0.3,
        ge=0.0,
        description="Idle time before an in-progress draft is committed"
    )

    model_config = {"frozen": True}


class Config(BaseModel):
    """Root configuration for outlinekit."""

    gateway: GatewayConfig = Field(..., description="Block store settings")
    editor: EditorConfig = Field(default_factory=EditorConfig, description="Editing settings")

    model_config = {"frozen": True}
