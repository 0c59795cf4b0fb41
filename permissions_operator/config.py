from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env",), env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    app_env: Literal["development", "production", "test"] = "development"
    operator_name: str = "rbac-permissions-operator"
    log_level: str = "INFO"
    log_json: bool = False
    log_file: str | None = None
    # Cluster access
    kube_context: str | None = None
    kube_config_path: str | None = Field(default=None, alias="KUBE_CONFIG_PATH")
    in_cluster: bool = Field(default=False, description="Load the service account config mounted in the pod")
    watch_namespace: str = Field(default="", description="Namespace to watch for GroupPermissions, empty for all")
    request_timeout_seconds: float = Field(default=30.0, description="Timeout applied to every API call")
    # Controller loop
    workers: int = Field(default=1, ge=1)
    resync_period_seconds: int = Field(default=300, description="Full re-enqueue interval, picks up new namespaces")
    watch_timeout_seconds: int = 60
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 300.0
    dry_run: bool = Field(default=False, description="Compute and log changes without applying them")
    # Health/metrics server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, alias="METRICS_PORT")

    @computed_field
    @property
    def is_debug(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
