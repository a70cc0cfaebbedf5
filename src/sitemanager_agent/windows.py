"""
Windows-specific Installer Implementation

Hosts the agent as a Windows service through nssm, running as LocalSystem
with its profile and logs under the system profile directory.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from .base import BaseInstaller, InstallRequest, ServiceRegistration, Step
from .download import find_member
from .errors import PreconditionError
from .platform import is_admin

logger = logging.getLogger(__name__)

# First build shipping AF_UNIX sockets, which the agent relies on
MIN_WINDOWS_BUILD = 17134

ENVIRONMENT_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"


def _normalize_entry(entry: str) -> str:
    return entry.strip().rstrip("\\").lower()


def path_with_entry(path_value: str, entry: str) -> str:
    """Append entry to a ';'-separated Path value unless already present"""
    parts = [p for p in path_value.split(";") if p]
    if any(_normalize_entry(p) == _normalize_entry(entry) for p in parts):
        return path_value
    return ";".join(parts + [entry])


def path_without_entry(path_value: str, entry: str) -> str:
    """Drop every occurrence of entry from a ';'-separated Path value"""
    parts = [p for p in path_value.split(";") if p]
    return ";".join(p for p in parts if _normalize_entry(p) != _normalize_entry(entry))


class WindowsInstaller(BaseInstaller):
    """Windows-specific installer implementation"""

    platform_name = "windows"
    executable_name = "zrok.exe"

    @property
    def install_root(self) -> Path:
        root = self.config.paths.windows_install_root
        if root is None:
            root = Path(os.environ.get("ProgramW6432", r"C:\Program Files"))
        return root

    @property
    def binaries_dir(self) -> Path:
        binaries = self.config.paths.windows_binaries_dir
        if binaries is None:
            binaries = self.install_root / "Skyline Communications" / "DataMiner SiteManager" / "zrok"
        return binaries

    @property
    def system_profile(self) -> Path:
        profile = self.config.paths.windows_system_profile
        if profile is None:
            system_root = Path(os.environ.get("SystemRoot", r"C:\Windows"))
            profile = system_root / "System32" / "config" / "systemprofile"
        return profile

    @property
    def profile_dir(self) -> Path:
        return self.system_profile / ".zrok"

    @property
    def log_dir(self) -> Path:
        return self.profile_dir / "logs"

    @property
    def nssm_path(self) -> Path:
        return self.binaries_dir / "nssm.exe"

    def check_privileges(self) -> None:
        if not is_admin():
            raise PreconditionError("This command must be run from an elevated (Administrator) prompt.")

    def check_os_version(self) -> None:
        build = self.platform_info.build
        if build is None or build < MIN_WINDOWS_BUILD:
            raise PreconditionError(
                f"Windows build {build} is not supported. "
                f"Build {MIN_WINDOWS_BUILD} (version 1803) or later is required."
            )

    def service_exists(self) -> bool:
        return self._query(["sc.exe", "query", self.service_name]).returncode == 0

    def install_steps(self, request: InstallRequest) -> List[Step]:
        steps = super().install_steps(request)
        steps.insert(1, ("Add binaries to machine Path", self.add_to_path))
        return steps

    def uninstall_steps(self) -> List[Step]:
        steps = super().uninstall_steps()
        steps.insert(-1, ("Remove binaries from machine Path", self.remove_from_path))
        return steps

    def release_archives(self) -> List[Tuple[str, str, str]]:
        return [
            ("agent", self.config.agent.archive_url("windows"), "zrok.tar.gz"),
            ("wrapper", self.config.wrapper.archive_url(), "nssm.zip"),
        ]

    def copy_binaries(self, extracted: Dict[str, Path]) -> None:
        agent_dir = extracted["agent"]
        shutil.copy2(find_member(agent_dir, self.executable_name), self.agent_path)
        shutil.copy2(find_member(agent_dir, "LICENSE"), self.binaries_dir / "LICENSE")
        shutil.copy2(find_member(extracted["wrapper"], "win64/nssm.exe"), self.nssm_path)

    def agent_env(self) -> Dict[str, str]:
        """Process environment pointing the agent at the LocalSystem profile"""
        env = dict(os.environ)
        env["USERPROFILE"] = str(self.system_profile)
        env["HOME"] = str(self.system_profile)
        return env

    def run_agent(self, args: List[str], secrets: Sequence[str] = ()) -> None:
        self._run([str(self.agent_path), *args], env=self.agent_env(), secrets=secrets)

    # Machine Path

    def read_machine_path(self) -> str:
        import winreg

        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, ENVIRONMENT_KEY, 0, winreg.KEY_READ) as key:
            value, _ = winreg.QueryValueEx(key, "Path")
        return value

    def write_machine_path(self, value: str) -> None:
        import ctypes
        import winreg

        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, ENVIRONMENT_KEY, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, "Path", 0, winreg.REG_EXPAND_SZ, value)

        # Let running shells and Explorer pick up the new value
        HWND_BROADCAST = 0xFFFF
        WM_SETTINGCHANGE = 0x001A
        SMTO_ABORTIFHUNG = 0x0002
        ctypes.windll.user32.SendMessageTimeoutW(
            HWND_BROADCAST, WM_SETTINGCHANGE, 0, "Environment", SMTO_ABORTIFHUNG, 5000, None
        )

    def add_to_path(self) -> None:
        entry = str(self.binaries_dir)
        machine_path = self.read_machine_path()
        updated = path_with_entry(machine_path, entry)
        if updated != machine_path:
            self.write_machine_path(updated)
            logger.info(f"   Added {entry} to the machine Path")
        else:
            logger.info(f"   {entry} already on the machine Path")

        os.environ["PATH"] = path_with_entry(os.environ.get("PATH", ""), entry)

    def remove_from_path(self) -> None:
        entry = str(self.binaries_dir)
        machine_path = self.read_machine_path()
        updated = path_without_entry(machine_path, entry)
        if updated != machine_path:
            self.write_machine_path(updated)
            logger.info(f"   Removed {entry} from the machine Path")

        os.environ["PATH"] = path_without_entry(os.environ.get("PATH", ""), entry)

    # Service wrapper

    def _nssm(self, *args: str) -> None:
        self._run([str(self.nssm_path), *args])

    def build_registration(self) -> ServiceRegistration:
        return ServiceRegistration(
            service_name=self.service_name,
            executable_path=self.agent_path,
            run_as_user="LocalSystem",
            auto_restart=True,
            description=self.config.service.description,
        )

    def register_service(self, registration: ServiceRegistration) -> None:
        name = registration.service_name
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._nssm("install", name, str(registration.executable_path), *registration.arguments)
        self._nssm("set", name, "AppDirectory", str(self.binaries_dir))
        self._nssm("set", name, "AppStdout", str(self.log_dir / f"{name}.out.log"))
        self._nssm("set", name, "AppStderr", str(self.log_dir / f"{name}.err.log"))
        self._nssm("set", name, "Start", "SERVICE_DELAYED_AUTO_START")
        self._nssm("set", name, "AppExit", "Default", "Restart" if registration.auto_restart else "Exit")
        self._nssm("set", name, "ObjectName", registration.run_as_user)
        self._nssm("set", name, "DisplayName", registration.description or name)
        self._nssm("set", name, "Description", registration.description or name)

    def start_service(self) -> None:
        self._nssm("start", self.service_name)

    def remove_service(self) -> None:
        # nssm reports a stopped service as an error; removal is what matters
        result = self._run([str(self.nssm_path), "stop", self.service_name], check=False)
        if result.returncode != 0:
            logger.warning(f"   nssm stop exited with {result.returncode}, continuing with removal")
        self._nssm("remove", self.service_name, "confirm")
