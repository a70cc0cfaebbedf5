"""
Linux-specific Installer Implementation

Registers the agent as a systemd unit running under the account that
invoked the installer through sudo.
"""

import logging
import os
import shutil
from pathlib import Path
from textwrap import dedent
from typing import Dict, List, Sequence, Tuple

from .base import BaseInstaller, ServiceRegistration
from .download import find_member
from .errors import PreconditionError
from .platform import get_invoking_user, is_admin

logger = logging.getLogger(__name__)


class LinuxInstaller(BaseInstaller):
    """Linux-specific installer implementation"""

    platform_name = "linux"

    @property
    def binaries_dir(self) -> Path:
        return self.config.paths.linux_binaries_dir

    @property
    def install_root(self) -> Path:
        return self.config.paths.linux_install_root

    @property
    def unit_path(self) -> Path:
        return self.config.paths.systemd_unit_dir / f"{self.service_name}.service"

    @property
    def invoking_user(self) -> str:
        return self._require_invoking_user()

    def _require_invoking_user(self) -> str:
        user = get_invoking_user()
        if user is None:
            raise PreconditionError(
                "Could not determine the invoking user. Run this command with sudo "
                "from a regular user account, not directly as root."
            )
        return user

    @property
    def user_home(self) -> Path:
        import pwd  # not available on Windows

        try:
            return Path(pwd.getpwnam(self.invoking_user).pw_dir)
        except KeyError:
            raise PreconditionError(f"User '{self.invoking_user}' does not exist.") from None

    @property
    def profile_dir(self) -> Path:
        return self.user_home / ".zrok"

    def check_privileges(self) -> None:
        if not is_admin():
            raise PreconditionError("This command must be run as root (use sudo).")
        # A direct root login or an account without a passwd entry fails
        # here, before any change
        self._require_invoking_user()
        home = self.user_home
        logger.debug(f"Invoking user home: {home}")
        if shutil.which("systemctl") is None:
            raise PreconditionError("systemctl not found. This host does not appear to run systemd.")

    def service_exists(self) -> bool:
        result = self._query(["systemctl", "list-unit-files", "--no-legend", f"{self.service_name}.service"])
        return result.returncode == 0 and f"{self.service_name}.service" in (result.stdout or "")

    def release_archives(self) -> List[Tuple[str, str, str]]:
        return [
            ("agent", self.config.agent.archive_url("linux"), "zrok.tar.gz"),
        ]

    def copy_binaries(self, extracted: Dict[str, Path]) -> None:
        agent_dir = extracted["agent"]
        shutil.copy2(find_member(agent_dir, self.executable_name), self.agent_path)
        self.agent_path.chmod(0o755)
        shutil.copy2(find_member(agent_dir, "LICENSE"), self.binaries_dir / "LICENSE")

    def run_agent(self, args: List[str], secrets: Sequence[str] = ()) -> None:
        """
        Run the agent CLI as the invoking user so its profile lands in that
        user's home. Fallback chain: runuser -> sudo.
        """
        user = self.invoking_user
        env = {
            "HOME": str(self.user_home),
            "USER": user,
            "LOGNAME": user,
            "PATH": os.environ.get("PATH", "/usr/sbin:/usr/bin:/sbin:/bin"),
        }
        cmd = [str(self.agent_path), *args]

        if shutil.which("runuser"):
            self._run(["runuser", "-u", user, "--", *cmd], env=env, secrets=secrets)
            return

        if shutil.which("sudo"):
            self._run(["sudo", "-H", "-u", user, "--", *cmd], env=env, secrets=secrets)
            return

        raise PreconditionError("Neither runuser nor sudo is available; cannot run the agent as the invoking user.")

    def build_registration(self) -> ServiceRegistration:
        return ServiceRegistration(
            service_name=self.service_name,
            executable_path=self.agent_path,
            run_as_user=self.invoking_user,
            auto_restart=True,
            description=self.config.service.description,
        )

    def render_unit(self, registration: ServiceRegistration) -> str:
        restart = "always" if registration.auto_restart else "no"
        return dedent(
            f"""\
            [Unit]
            Description={registration.description}
            After=network-online.target
            Wants=network-online.target

            [Service]
            Type=simple
            ExecStart={registration.command_line}
            Restart={restart}
            RestartSec=5
            User={registration.run_as_user}

            [Install]
            WantedBy=multi-user.target
            """
        )

    def register_service(self, registration: ServiceRegistration) -> None:
        self.unit_path.parent.mkdir(parents=True, exist_ok=True)
        self.unit_path.write_text(self.render_unit(registration), encoding="utf-8")
        logger.info(f"   Wrote {self.unit_path}")

        self._run(["systemctl", "daemon-reload"])
        self._run(["systemctl", "enable", self.service_name])

    def start_service(self) -> None:
        self._run(["systemctl", "start", self.service_name])

    def remove_service(self) -> None:
        self._run(["systemctl", "stop", self.service_name])
        self._run(["systemctl", "disable", self.service_name])
        if self.unit_path.exists():
            self.unit_path.unlink()
            logger.info(f"   Removed {self.unit_path}")
        self._run(["systemctl", "daemon-reload"])
