"""
Installer Configuration

Built-in defaults for the pinned agent release and the installation layout,
optionally overridden from a YAML file.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import InstallerError

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "SITEMANAGER_AGENT_LOG_LEVEL"

# Literal examples from the usage text; never accepted as real input
PLACEHOLDER_TOKEN = "<token>"
PLACEHOLDER_DESCRIPTION = "<description>"


@dataclass
class AgentSettings:
    """Pinned agent release"""
    version: str = "1.0.7"
    api_endpoint: str = "https://api.zrok.dataminer.services"
    download_url: str = (
        "https://github.com/openziti/zrok/releases/download/"
        "v{version}/zrok_{version}_{os}_amd64.tar.gz"
    )

    def archive_url(self, os_name: str) -> str:
        return self.download_url.format(version=self.version, os=os_name)


@dataclass
class ServiceSettings:
    name: str = "zrok-agent"
    description: str = "Zrok Agent Service"


@dataclass
class PathSettings:
    linux_install_root: Path = Path("/opt")
    linux_binaries_dir: Path = Path("/opt/skyline/dataminer-sitemanager/zrok")
    systemd_unit_dir: Path = Path("/etc/systemd/system")
    windows_install_root: Optional[Path] = None  # ProgramW6432
    windows_binaries_dir: Optional[Path] = None  # under windows_install_root
    windows_system_profile: Optional[Path] = None  # under SystemRoot


PATH_KEYS = PathSettings.__dataclass_fields__.keys()


@dataclass
class WrapperSettings:
    """Pinned nssm release (Windows service wrapper)"""
    version: str = "2.24"
    download_url: str = "https://nssm.cc/release/nssm-{version}.zip"

    def archive_url(self) -> str:
        return self.download_url.format(version=self.version)


@dataclass
class InstallerConfig:
    """Effective installer settings"""
    agent: AgentSettings = field(default_factory=AgentSettings)
    service: ServiceSettings = field(default_factory=ServiceSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    wrapper: WrapperSettings = field(default_factory=WrapperSettings)
    download_timeout: int = 300
    log_level: str = "info"


def _apply_section(target: Any, values: Dict[str, Any], path_keys=()) -> None:
    for key, value in values.items():
        if not hasattr(target, key):
            logger.debug(f"Ignoring unknown config key: {key}")
            continue
        if key in path_keys and value is not None:
            value = Path(value)
        setattr(target, key, value)


def load_config(config_file: Optional[str] = None) -> InstallerConfig:
    """
    Load installer configuration.

    Args:
        config_file: Optional YAML file overriding the built-in defaults

    Returns:
        InstallerConfig with defaults, file overrides and env overrides applied
    """
    config = InstallerConfig()

    if config_file:
        config_path = Path(config_file)
        if not config_path.exists():
            raise InstallerError(f"Config file not found: {config_path}")

        try:
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InstallerError(f"Invalid config file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise InstallerError(f"Invalid config file {config_path}: expected a mapping")

        _apply_section(config.agent, data.get("agent") or {})
        _apply_section(config.service, data.get("service") or {})
        _apply_section(
            config.paths,
            data.get("paths") or {},
            path_keys=tuple(PATH_KEYS),
        )
        _apply_section(config.wrapper, data.get("wrapper") or {})

        download = data.get("download") or {}
        if "timeout" in download:
            config.download_timeout = int(download["timeout"])

        logging_config = data.get("logging") or {}
        if "level" in logging_config:
            config.log_level = str(logging_config["level"])

    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        config.log_level = env_level

    return config
