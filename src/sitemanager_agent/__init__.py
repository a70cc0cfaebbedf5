"""
SiteManager Agent Installer

Installs the zrok remote-access agent used by DataMiner SiteManager as an
OS service on Linux and Windows hosts, and removes it again.
"""

from .base import BaseInstaller, InstallRequest, ServiceRegistration, ServiceState
from .config import InstallerConfig, load_config
from .errors import InstallerError, PreconditionError, StepFailedError
from .platform import detect_platform, PlatformInfo
from .windows import WindowsInstaller
from .linux import LinuxInstaller
from .version import __version__

__all__ = [
    "BaseInstaller",
    "InstallRequest",
    "ServiceRegistration",
    "ServiceState",
    "InstallerConfig",
    "load_config",
    "InstallerError",
    "PreconditionError",
    "StepFailedError",
    "detect_platform",
    "PlatformInfo",
    "WindowsInstaller",
    "LinuxInstaller",
    "__version__",
]
