from __future__ import annotations

import subprocess

import pytest
from click.testing import CliRunner

import sitemanager_agent.cli as cli_mod
from sitemanager_agent.base import ServiceState
from sitemanager_agent.errors import PreconditionError, StepFailedError, UnsupportedPlatformError


class FakeInstaller:
    def __init__(self, installed=False, error=None):
        self.installed = installed
        self.error = error
        self.calls = []

    async def install(self, request):
        self.calls.append(("install", request.account_token, request.site_description))
        if self.error:
            raise self.error
        if self.installed:
            return False
        self.installed = True
        return True

    async def uninstall(self):
        self.calls.append(("uninstall",))
        if self.error:
            raise self.error
        if not self.installed:
            return False
        self.installed = False
        return True

    def get_state(self):
        return ServiceState.INSTALLED if self.installed else ServiceState.NOT_INSTALLED


@pytest.fixture
def fake_installer(monkeypatch):
    installer = FakeInstaller()
    monkeypatch.setattr(cli_mod, "_make_installer", lambda config: installer)
    return installer


@pytest.fixture
def runner():
    return CliRunner()


@pytest.mark.parametrize("args", [
    [],
    ["help"],
    ["frobnicate"],
    ["frobnicate", "--force", "x"],
    ["-x"],
    ["--unknown"],
    ["--unknown", "install", "3G67gmYPhaww", "Skyline HQ"],
])
def test_help_is_default_and_never_touches_host(runner, fake_installer, args):
    result = runner.invoke(cli_mod.cli, args)

    assert result.exit_code == 0
    assert "Usage:" in result.output
    assert 'install 3G67gmYPhaww "Skyline HQ"' in result.output
    assert fake_installer.calls == []


@pytest.mark.parametrize("args", [
    ["install"],
    ["install", "3G67gmYPhaww"],
    ["install", "3G67gmYPhaww", "Skyline", "HQ"],
    ["install", "--token", "x"],
    ["install", "-t", "3G67gmYPhaww", "Skyline HQ"],
])
def test_install_requires_token_and_description(runner, fake_installer, args):
    result = runner.invoke(cli_mod.cli, args)

    assert result.exit_code == 1
    assert "install requires <token> and <description>" in result.output
    assert "Usage:" in result.output
    assert fake_installer.calls == []


@pytest.mark.parametrize("args", [
    ["install", "<token>", "Skyline HQ"],
    ["install", "3G67gmYPhaww", "<description>"],
    ["install", "<token>", "<description>"],
])
def test_install_rejects_placeholders(runner, fake_installer, args):
    result = runner.invoke(cli_mod.cli, args)

    assert result.exit_code == 1
    assert "placeholder" in result.output
    assert "Example:" in result.output
    assert fake_installer.calls == []


def test_install_success(runner, fake_installer):
    result = runner.invoke(cli_mod.cli, ["install", "3G67gmYPhaww", "Skyline HQ"])

    assert result.exit_code == 0, result.output
    assert "zrok-agent service installed and started." in result.output
    assert fake_installer.calls == [("install", "3G67gmYPhaww", "Skyline HQ")]


def test_install_already_installed(runner, fake_installer):
    fake_installer.installed = True

    result = runner.invoke(cli_mod.cli, ["install", "3G67gmYPhaww", "Skyline HQ"])

    assert result.exit_code == 0
    assert "Service already installed." in result.output


def test_install_precondition_failure(runner, fake_installer):
    fake_installer.error = PreconditionError("This command must be run as root (use sudo).")

    result = runner.invoke(cli_mod.cli, ["install", "3G67gmYPhaww", "Skyline HQ"])

    assert result.exit_code == 1
    assert "ERROR: This command must be run as root" in result.output


def test_install_step_failure_lists_completed_steps(runner, fake_installer):
    cause = subprocess.CalledProcessError(1, ["zrok", "enable"])
    fake_installer.error = StepFailedError("Configure agent", cause, ["Download agent binaries"])

    result = runner.invoke(cli_mod.cli, ["install", "3G67gmYPhaww", "Skyline HQ"])

    assert result.exit_code == 1
    assert "Configure agent failed" in result.output
    assert "Download agent binaries" in result.output
    assert "not rolled back" in result.output


def test_install_then_uninstall(runner, fake_installer):
    runner.invoke(cli_mod.cli, ["install", "3G67gmYPhaww", "Skyline HQ"])

    result = runner.invoke(cli_mod.cli, ["uninstall"])

    assert result.exit_code == 0
    assert "Uninstall complete." in result.output
    assert fake_installer.installed is False


def test_uninstall_not_installed(runner, fake_installer):
    result = runner.invoke(cli_mod.cli, ["uninstall"])

    assert result.exit_code == 0
    assert "Service zrok-agent is not installed." in result.output


@pytest.mark.parametrize("extra", [["extra"], ["--force"], ["-y", "now"]])
def test_uninstall_ignores_extra_arguments(runner, fake_installer, extra):
    result = runner.invoke(cli_mod.cli, ["uninstall", *extra])

    assert result.exit_code == 0
    assert "Service zrok-agent is not installed." in result.output
    assert fake_installer.calls == [("uninstall",)]


def test_uninstall_failure(runner, fake_installer):
    fake_installer.installed = True
    fake_installer.error = StepFailedError("Remove service", subprocess.CalledProcessError(5, ["systemctl"]))

    result = runner.invoke(cli_mod.cli, ["uninstall"])

    assert result.exit_code == 1
    assert "Remove service failed" in result.output


@pytest.mark.parametrize("installed,expected", [(False, "NotInstalled"), (True, "Installed")])
def test_status(runner, fake_installer, installed, expected):
    fake_installer.installed = installed

    result = runner.invoke(cli_mod.cli, ["status"])

    assert result.exit_code == 0
    assert f"zrok-agent: {expected}" in result.output
    assert fake_installer.calls == []


def test_status_ignores_extra_arguments(runner, fake_installer):
    result = runner.invoke(cli_mod.cli, ["status", "--verbose"])

    assert result.exit_code == 0
    assert "zrok-agent: NotInstalled" in result.output


def test_unsupported_platform(runner, monkeypatch):
    def unsupported(config):
        raise UnsupportedPlatformError("Unsupported platform: darwin")

    monkeypatch.setattr(cli_mod, "_make_installer", unsupported)

    result = runner.invoke(cli_mod.cli, ["uninstall"])

    assert result.exit_code == 1
    assert "Unsupported platform: darwin" in result.output


def test_config_file_overrides_service_name(runner, fake_installer, tmp_path):
    config_file = tmp_path / "installer.yaml"
    config_file.write_text("service:\n  name: zrok-agent-lab\n")

    result = runner.invoke(cli_mod.cli, ["--config-file", str(config_file), "uninstall"])

    assert result.exit_code == 0
    assert "Service zrok-agent-lab is not installed." in result.output


def test_missing_config_file(runner, fake_installer, tmp_path):
    result = runner.invoke(cli_mod.cli, ["--config-file", str(tmp_path / "nope.yaml"), "status"])

    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_version(runner):
    result = runner.invoke(cli_mod.cli, ["--version"])

    assert result.exit_code == 0
    assert cli_mod.__version__ in result.output


@pytest.mark.parametrize("platform_name,expected", [("linux", "LinuxInstaller"), ("windows", "WindowsInstaller")])
def test_get_installer_class(monkeypatch, platform_name, expected):
    monkeypatch.setattr(
        cli_mod, "detect_platform",
        lambda: type("Info", (), {"platform": platform_name})(),
    )
    assert cli_mod.get_installer_class().__name__ == expected


def test_get_installer_class_unsupported(monkeypatch):
    monkeypatch.setattr(cli_mod, "detect_platform", lambda: type("Info", (), {"platform": "darwin"})())
    with pytest.raises(UnsupportedPlatformError):
        cli_mod.get_installer_class()
