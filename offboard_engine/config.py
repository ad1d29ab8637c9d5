"""
Configuration for the Offboard Engine.

Options are read from a YAML or JSON file and validated into an
EngineConfig. Secrets are never stored in the file; the connector
section only names the environment variable that holds them.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_HOLD_DURATION_DAYS = 2555


class ConnectorSettings(BaseModel):
    """Tenant and app registration used by the Graph connector."""
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret_env: str = "OFFBOARD_CLIENT_SECRET"
    timeout_seconds: float = 30.0
    shared_calendar_mailboxes: List[str] = Field(default_factory=list)


class EngineConfig(BaseModel):
    """Recognized configuration options."""
    eligibility_scope: str = Field(..., description="Scope whose disabled identities are eligible for hold")
    tracked_set_path: Path = Field(..., description="Line-oriented list of held principal names")
    quarantine_scope: Optional[str] = Field(None, description="Scope disabled identities are moved into")
    hold_duration_days: int = Field(DEFAULT_HOLD_DURATION_DAYS, gt=0)
    license_group_ids: List[str] = Field(default_factory=list)
    mfa_group_ids: List[str] = Field(default_factory=list)
    schedule_path: Optional[Path] = None
    audit_trail_path: Path = Path("audit/offboarded_users.json")
    backup_dir: Path = Path("backups")
    log_dir: Path = Path("logs")
    upn_domain: Optional[str] = None
    skip_mail_groups: bool = False
    skip_calendar_permissions: bool = False
    reclaim_delay_hours: int = Field(12, ge=0)
    simulation: bool = False
    connector: ConnectorSettings = Field(default_factory=ConnectorSettings)

    @field_validator('eligibility_scope')
    @classmethod
    def scope_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('eligibility_scope must not be blank')
        return v.strip()

    @property
    def resolved_schedule_path(self) -> Path:
        """Schedule document, defaulting to a sibling of the tracked set."""
        if self.schedule_path:
            return self.schedule_path
        return self.tracked_set_path.with_name(self.tracked_set_path.stem + "_schedule.json")


def _read_file(path: Path) -> Dict[str, Any]:
    """Parse a YAML or JSON configuration file."""
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Malformed configuration {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {path} must be a mapping")
    return data


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> EngineConfig:
    """
    Load and validate engine configuration.

    Args:
        path: YAML or JSON file; may be None when overrides carry everything
        **overrides: Values that take precedence over the file (None is ignored)

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: If the file is unreadable or validation fails
    """
    data: Dict[str, Any] = {}
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        data = _read_file(config_path)
        logger.info(f"Loaded configuration from {config_path}")

    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return EngineConfig(**data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e
