"""
Platform Detection

Detect OS platform, privileges and the identity that invoked the installer.
"""

import ctypes
import os
import platform
import socket
import sys
from dataclasses import dataclass
from typing import Optional


@dataclass
class PlatformInfo:
    """Platform information"""
    platform: str  # 'windows', 'linux', 'darwin'
    hostname: str
    version: str
    architecture: str
    processor: str
    build: Optional[int] = None  # Windows build number


def detect_platform() -> PlatformInfo:
    """Detect current platform"""
    system = platform.system().lower()

    build = None
    if system == "windows":
        build = sys.getwindowsversion().build

    return PlatformInfo(
        platform=system,
        hostname=socket.gethostname(),
        version=platform.version(),
        architecture=platform.machine(),
        processor=platform.processor(),
        build=build,
    )


def is_admin() -> bool:
    """Check whether the current process runs with elevated privileges"""
    if platform.system().lower() == "windows":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def get_invoking_user() -> Optional[str]:
    """
    Name of the user that ran the installer through sudo.

    Returns None when the process was started directly as root, or without
    sudo at all.
    """
    user = os.environ.get("SUDO_USER")
    if not user or user == "root":
        return None
    return user
