"""Configuration management for the Scoping Agent."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .auth import AzureCliCredential, BearerCredential, Credential, PatCredential

AUTH_MODES = ("pat", "bearer", "azure_cli")
SIZE_UNITS = ("kib", "bytes")

ONE_GIB = 1024 * 1024 * 1024
ONE_MIB = 1024 * 1024


class ConfigurationError(ValueError):
    """Raised when the configuration is incomplete or invalid."""


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ScopingConfig:
    """Configuration for the Azure DevOps Scoping Agent."""

    # Required settings
    organization: str

    # Credential: PAT (basic auth, blank username), static bearer, or Azure CLI
    auth_mode: str = "pat"
    token: Optional[str] = None
    username: str = ""

    base_host: str = "dev.azure.com"
    api_version: str = "7.1"

    # Optional settings with defaults
    output_dir: str = "./output"
    enable_deep_scan: bool = False
    debug: bool = False
    large_repo_gib: float = 1.0
    large_blob_mb: float = 50.0
    size_unit: str = "kib"

    # Execution
    max_workers: int = 8
    timeout: int = 30
    max_retries: int = 2
    retry_delay: float = 1.0
    run_timeout: int = 0  # seconds, 0 = no global deadline
    clone_timeout: int = 3600

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.organization:
            raise ConfigurationError("organization is required")
        self.organization = self.organization.strip()

        self.auth_mode = self.auth_mode.lower()
        if self.auth_mode not in AUTH_MODES:
            raise ConfigurationError(f"auth_mode must be one of {', '.join(AUTH_MODES)}")
        if self.auth_mode in ("pat", "bearer") and not self.token:
            raise ConfigurationError(f"a token is required for auth_mode={self.auth_mode}")

        self.size_unit = self.size_unit.lower()
        if self.size_unit not in SIZE_UNITS:
            raise ConfigurationError(f"size_unit must be one of {', '.join(SIZE_UNITS)}")

        if self.large_repo_gib <= 0 or self.large_blob_mb <= 0:
            raise ConfigurationError("size thresholds must be positive")
        if not 1 <= self.max_workers <= 64:
            raise ConfigurationError("max_workers must be between 1 and 64")
        if self.timeout <= 0 or self.max_retries < 0 or self.retry_delay < 0:
            raise ConfigurationError("timeout must be positive and retries non-negative")
        if self.run_timeout < 0:
            raise ConfigurationError("run_timeout cannot be negative")

        self.output_dir = os.path.expanduser(self.output_dir)

    @property
    def org_url(self) -> str:
        return f"https://{self.base_host}/{self.organization}"

    @property
    def large_repo_threshold_bytes(self) -> int:
        return int(self.large_repo_gib * ONE_GIB)

    @property
    def large_blob_threshold_bytes(self) -> int:
        return int(self.large_blob_mb * ONE_MIB)

    def build_credential(self) -> Credential:
        """Create the credential provider selected by ``auth_mode``."""
        if self.auth_mode == "pat":
            return PatCredential(self.token or "", username=self.username)
        if self.auth_mode == "bearer":
            return BearerCredential(self.token or "")
        return AzureCliCredential()

    @classmethod
    def from_env(cls, **overrides) -> "ScopingConfig":
        """Create configuration from environment variables with optional overrides."""
        load_dotenv()

        try:
            config_dict = {
                "organization": os.getenv("ADO_ORG") or os.getenv("ORG", ""),
                "auth_mode": os.getenv("ADO_AUTH_MODE", "pat"),
                "token": os.getenv("ADO_PAT") or os.getenv("ADO_TOKEN") or None,
                "username": os.getenv("ADO_USERNAME", ""),
                "base_host": os.getenv("ADO_BASE_HOST", "dev.azure.com"),
                "api_version": os.getenv("ADO_API_VERSION", "7.1"),
                "output_dir": os.getenv("OUTPUT_DIR", "./output"),
                "enable_deep_scan": _env_bool("SCAN_LARGE_FILES"),
                "debug": _env_bool("DEBUG"),
                "large_repo_gib": float(os.getenv("LARGE_REPO_GIB", "1")),
                "large_blob_mb": float(os.getenv("LARGE_BLOB_MB", "50")),
                "size_unit": os.getenv("SIZE_UNIT", "kib"),
                "max_workers": int(os.getenv("MAX_WORKERS", "8")),
                "timeout": int(os.getenv("TIMEOUT", "30")),
                "run_timeout": int(os.getenv("RUN_TIMEOUT", "0")),
                "clone_timeout": int(os.getenv("CLONE_TIMEOUT", "3600")),
            }
        except ValueError as e:
            raise ConfigurationError(f"invalid numeric setting in environment: {e}") from e

        # Apply overrides (filter out None values from CLI)
        for key, value in overrides.items():
            if value is not None:
                config_dict[key] = value

        return cls(**config_dict)


def ensure_output_dir(config: ScopingConfig) -> Path:
    """Ensure the output directory exists and return it as a Path."""
    output_path = Path(config.output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    return output_path
