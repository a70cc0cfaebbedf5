"""
Pytest configuration and shared fixtures
"""
import io
import os
import shutil
import subprocess
import sys
import tarfile
import zipfile
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from sitemanager_agent.config import InstallerConfig  # noqa: E402
from sitemanager_agent.download import ReleaseDownloader  # noqa: E402


class FakeServiceHost:
    """
    Records external commands and plays the OS service manager.

    Registration state flips on the commands that create or delete the
    service, so install/uninstall round trips can be checked end to end.
    """

    def __init__(self, service_name="zrok-agent"):
        self.service_name = service_name
        self.installed = False
        self.calls = []
        self.envs = []
        self.fail_when = None

    def __call__(self, cmd, env=None, check=True, capture=False):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        self.envs.append(env)

        returncode, stdout = 0, ""
        program = Path(cmd[0]).name

        if cmd[:2] == ["systemctl", "list-unit-files"]:
            if self.installed:
                stdout = f"{self.service_name}.service enabled enabled\n"
        elif cmd[:2] == ["sc.exe", "query"]:
            returncode = 0 if self.installed else 1060
        elif self.fail_when is not None and self.fail_when(cmd):
            returncode = 1
        elif cmd[:2] == ["systemctl", "enable"]:
            self.installed = True
        elif cmd[:2] == ["systemctl", "disable"]:
            self.installed = False
        elif program == "nssm.exe" and cmd[1] == "install":
            self.installed = True
        elif program == "nssm.exe" and cmd[1] == "remove":
            self.installed = False

        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, cmd)
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    def commands(self, *prefix):
        """Calls whose leading words match prefix (program compared by basename)"""
        matched = []
        for cmd in self.calls:
            head = [Path(cmd[0]).name] + cmd[1:]
            if head[:len(prefix)] == list(prefix):
                matched.append(cmd)
        return matched


@pytest.fixture
def service_host():
    return FakeServiceHost()


def _add_bytes(tar, name, data):
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))


@pytest.fixture
def make_tarball(tmp_path):
    """Build a .tar.gz from {member_name: bytes}"""
    def _make(name, members):
        path = tmp_path / "archives" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, "w:gz") as tar:
            for member, data in members.items():
                _add_bytes(tar, member, data)
        return path
    return _make


@pytest.fixture
def make_zip(tmp_path):
    """Build a .zip from {member_name: bytes}"""
    def _make(name, members):
        path = tmp_path / "archives" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as zipf:
            for member, data in members.items():
                zipf.writestr(member, data)
        return path
    return _make


@pytest.fixture
def sandbox_config(tmp_path):
    """
    Installer config with every host location redirected into tmp_path.
    """
    config = InstallerConfig()
    config.paths.linux_install_root = tmp_path / "opt"
    config.paths.linux_binaries_dir = tmp_path / "opt" / "skyline" / "dataminer-sitemanager" / "zrok"
    config.paths.systemd_unit_dir = tmp_path / "etc" / "systemd" / "system"
    config.paths.windows_install_root = tmp_path / "Program Files"
    config.paths.windows_system_profile = tmp_path / "Windows" / "System32" / "config" / "systemprofile"
    (tmp_path / "opt").mkdir()
    (tmp_path / "Program Files").mkdir()
    return config


@pytest.fixture
def fake_downloads(monkeypatch):
    """
    Serve release archives from local files instead of the network.

    Returns the {url: archive_path} mapping to fill in and a list of the URLs
    that were requested.
    """
    archives = {}
    requested = []

    async def fake_download_file(self, url, destination):
        requested.append(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy(archives[url], destination)
        return destination

    monkeypatch.setattr(ReleaseDownloader, "download_file", fake_download_file)
    return archives, requested
