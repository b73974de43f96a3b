from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .templates import WorkflowTemplate

DEFAULT_TENANT_ID = "default-tenant"


class AgentboardConfig(BaseModel):
    """Top-level configuration model."""

    tenant_id: str = DEFAULT_TENANT_ID
    database_url: Optional[str] = None
    polling_interval: float = Field(default=1.0, gt=0)
    workflows: Dict[str, WorkflowTemplate] = Field(default_factory=dict)


def load_config(path: Optional[str] = None) -> AgentboardConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to AGENTBOARD_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("AGENTBOARD_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AgentboardConfig(**data)
    else:
        config = AgentboardConfig()

    env_db_url = os.getenv("AGENTBOARD_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_tenant = os.getenv("AGENTBOARD_TENANT_ID")
    if env_tenant:
        config.tenant_id = env_tenant
    return config
