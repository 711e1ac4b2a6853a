"""Sandbox (nsjail) configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class SandboxConfig(BaseSettings):
    """nsjail isolation settings for spawned executables."""

    sandbox_enabled: bool = Field(default=False)
    nsjail_binary: str = Field(default="nsjail")
    sandbox_time_limit: int = Field(default=0, ge=0, le=86400)
    sandbox_network: bool = Field(default=False)
    sandbox_user_id: int = Field(default=65534, ge=0)
    sandbox_group_id: int = Field(default=65534, ge=0)
    sandbox_hostname: str = Field(default="sandbox")
    sandbox_rlimit_nofile: int = Field(default=256, ge=16)
    sandbox_rlimit_nproc: int = Field(default=256, ge=1)
    sandbox_rlimit_fsize_mb: int = Field(default=100, ge=1)

    class Config:
        env_prefix = ""
        extra = "ignore"
