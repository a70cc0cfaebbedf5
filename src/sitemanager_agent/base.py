"""
Base Installer Class

Lifecycle orchestration shared by the platform-specific installers.
"""

import asyncio
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import InstallerConfig, PLACEHOLDER_DESCRIPTION, PLACEHOLDER_TOKEN
from .download import ReleaseDownloader, extract_archive
from .errors import InstallerError, PreconditionError, StepFailedError
from .platform import PlatformInfo, detect_platform

logger = logging.getLogger(__name__)


def run_command(
    cmd: Sequence[str],
    env: Optional[Dict[str, str]] = None,
    check: bool = True,
    capture: bool = False,
) -> subprocess.CompletedProcess:
    """
    Run an external command.

    Output is left attached to the terminal unless capture is set, so the
    tool's own error messages reach the operator.
    """
    return subprocess.run(
        list(cmd),
        env=env,
        check=check,
        capture_output=capture,
        text=True,
    )


class ServiceState(str, Enum):
    NOT_INSTALLED = "NotInstalled"
    INSTALLED = "Installed"


@dataclass
class InstallRequest:
    """Account token and site description for a new installation."""
    account_token: str
    site_description: str

    def validate(self) -> None:
        if self.account_token == PLACEHOLDER_TOKEN or self.site_description == PLACEHOLDER_DESCRIPTION:
            raise PreconditionError(
                "You must replace the placeholder values <token> and <description> "
                "with your actual zrok account token and environment description."
            )
        if not self.account_token or not self.account_token.strip():
            raise PreconditionError("The account token must not be empty.")
        if not self.site_description or not self.site_description.strip():
            raise PreconditionError("The site description must not be empty.")


@dataclass
class ServiceRegistration:
    """What gets registered with the OS service manager"""
    service_name: str
    executable_path: Path
    arguments: List[str] = field(default_factory=lambda: ["agent", "start"])
    run_as_user: str = "root"
    auto_restart: bool = True
    description: str = ""

    @property
    def command_line(self) -> str:
        return " ".join([str(self.executable_path), *self.arguments])


Step = Tuple[str, Callable]


class BaseInstaller:
    """
    Base installer class.

    Platform-specific installers inherit from this class and provide the
    service manager operations, the binaries layout and the identity the
    agent runs under.
    """

    platform_name = ""
    executable_name = "zrok"

    def __init__(
        self,
        config: InstallerConfig,
        runner: Callable[..., subprocess.CompletedProcess] = run_command,
        platform_info: Optional[PlatformInfo] = None,
    ):
        self.config = config
        self.runner = runner
        self.platform_info = platform_info or detect_platform()
        self.service_name = config.service.name

    # Layout

    @property
    def binaries_dir(self) -> Path:
        raise NotImplementedError

    @property
    def install_root(self) -> Path:
        """Directory above which empty parents are never removed."""
        raise NotImplementedError

    @property
    def profile_dir(self) -> Path:
        """Agent state directory in the service identity's home."""
        raise NotImplementedError

    @property
    def agent_path(self) -> Path:
        return self.binaries_dir / self.executable_name

    # Preconditions

    def check_privileges(self) -> None:
        raise NotImplementedError

    def check_os_version(self) -> None:
        """Hosts are supported unless a platform says otherwise."""

    # Service manager

    def service_exists(self) -> bool:
        raise NotImplementedError

    def register_service(self, registration: ServiceRegistration) -> None:
        raise NotImplementedError

    def start_service(self) -> None:
        raise NotImplementedError

    def remove_service(self) -> None:
        raise NotImplementedError

    # Agent

    def run_agent(self, args: List[str], secrets: Sequence[str] = ()) -> None:
        raise NotImplementedError

    def release_archives(self) -> List[Tuple[str, str, str]]:
        """(key, url, filename) for every archive to download"""
        raise NotImplementedError

    def copy_binaries(self, extracted: Dict[str, Path]) -> None:
        raise NotImplementedError

    def build_registration(self) -> ServiceRegistration:
        raise NotImplementedError

    # Lifecycle

    def get_state(self) -> ServiceState:
        if self.service_exists():
            return ServiceState.INSTALLED
        return ServiceState.NOT_INSTALLED

    async def install(self, request: InstallRequest) -> bool:
        """
        Install and start the agent service.

        Returns:
            False when the service was already installed, True otherwise

        Raises:
            PreconditionError: Before any change to the host
            StepFailedError: When a step fails; completed steps are not undone
        """
        request.validate()
        self.check_privileges()
        self.check_os_version()

        if self.service_exists():
            logger.info(f"Service {self.service_name} already installed, nothing to do")
            return False

        await self._run_steps(self.install_steps(request))
        logger.info(f"✅ {self.service_name} installed and started")
        return True

    async def uninstall(self) -> bool:
        """
        Stop and remove the agent service, its files and its profile.

        Returns:
            False when the service was not installed, True otherwise
        """
        self.check_privileges()

        if not self.service_exists():
            logger.info(f"Service {self.service_name} is not installed, nothing to do")
            return False

        await self._run_steps(self.uninstall_steps())
        logger.info(f"✅ {self.service_name} uninstalled")
        return True

    def install_steps(self, request: InstallRequest) -> List[Step]:
        return [
            ("Download agent binaries", self.fetch_binaries),
            ("Configure agent", lambda: self.configure_agent(request)),
            ("Register service", lambda: self.register_service(self.build_registration())),
            ("Start service", self.start_service),
        ]

    def uninstall_steps(self) -> List[Step]:
        return [
            ("Disable agent environment", self.disable_agent),
            ("Remove service", self.remove_service),
            ("Remove agent profile", self.remove_profile),
            ("Remove agent binaries", self.remove_binaries),
        ]

    async def _run_steps(self, steps: List[Step]) -> None:
        completed: List[str] = []
        for name, action in steps:
            logger.info(f"▶️  {name}...")
            try:
                result = action()
                if asyncio.iscoroutine(result):
                    await result
            except (InstallerError, subprocess.CalledProcessError, OSError) as e:
                logger.error(f"❌ {name} failed: {e}")
                if completed:
                    logger.error(f"   Steps already applied (not rolled back): {', '.join(completed)}")
                raise StepFailedError(name, e, completed) from e
            completed.append(name)

    # Steps

    async def fetch_binaries(self) -> None:
        """Download and unpack the release archives, then copy the binaries into place"""
        with tempfile.TemporaryDirectory(prefix="sitemanager-agent-") as scratch:
            scratch_dir = Path(scratch)
            extracted: Dict[str, Path] = {}

            async with ReleaseDownloader(timeout=self.config.download_timeout) as downloader:
                for key, url, filename in self.release_archives():
                    archive = await downloader.download_file(url, scratch_dir / filename)
                    extracted[key] = extract_archive(archive, scratch_dir / key)

            self.binaries_dir.mkdir(parents=True, exist_ok=True)
            self.copy_binaries(extracted)

        logger.info(f"   Binaries installed in {self.binaries_dir}")

    def configure_agent(self, request: InstallRequest) -> None:
        self.run_agent(["config", "set", "apiEndpoint", self.config.agent.api_endpoint])
        self.run_agent(
            ["enable", request.account_token, "--description", request.site_description],
            secrets=[request.account_token],
        )

    def disable_agent(self) -> None:
        self.run_agent(["disable"])

    def remove_profile(self) -> None:
        if self.profile_dir.exists():
            shutil.rmtree(self.profile_dir)
            logger.info(f"   Removed {self.profile_dir}")

    def remove_binaries(self) -> None:
        if self.binaries_dir.exists():
            shutil.rmtree(self.binaries_dir)
            logger.info(f"   Removed {self.binaries_dir}")
        remove_empty_parents(self.binaries_dir, self.install_root)

    # Helpers

    def _run(self, cmd: Sequence[str], env: Optional[Dict[str, str]] = None,
             secrets: Sequence[str] = (), check: bool = True) -> subprocess.CompletedProcess:
        logger.debug(f"   $ {mask_command(cmd, secrets)}")
        return self.runner(list(cmd), env=env, check=check)

    def _query(self, cmd: Sequence[str]) -> subprocess.CompletedProcess:
        logger.debug(f"   $ {mask_command(cmd)}")
        return self.runner(list(cmd), check=False, capture=True)


def mask_command(cmd: Sequence[str], secrets: Sequence[str] = ()) -> str:
    return " ".join("****" if part in secrets else str(part) for part in cmd)


def remove_empty_parents(path: Path, stop_at: Path) -> None:
    """Remove empty ancestors of path that lie strictly below stop_at"""
    for parent in path.parents:
        if parent == stop_at or stop_at not in parent.parents:
            break
        if not parent.exists():
            continue
        if any(parent.iterdir()):
            break
        parent.rmdir()
        logger.info(f"   Removed empty directory {parent}")
