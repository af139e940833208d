"""
Service Descriptors

pollenwall is meant to keep running in the background. This module renders the file that
makes the platform's service manager start it with the user session:

- Linux: a systemd user unit, ~/.config/systemd/user/pollenwall.service
- macOS: a launchd agent, ~/Library/LaunchAgents/com.pollinations.pollenwall.plist
- Windows: a script in the Startup folder of the start menu

Nothing is installed; the descriptor is printed together with where to put it.
"""

import os
import sys
import shlex
import shutil
import plistlib
import subprocess
from pathlib import Path
from dataclasses import dataclass

from pollenwall.wallpaper_handler import UnsupportedPlatformError, platform_key

SERVICE_NAME = "pollenwall"
LAUNCHD_LABEL = "com.pollinations.pollenwall"


@dataclass(frozen=True)
class ServiceDescriptor:
    content: str
    install_path: Path
    instructions: str


def pollenwall_command(args: str = "", executable: str = None) -> list[str]:
    """
    The command line the service should run: the installed pollenwall script if there is one,
    else this interpreter running the module, followed by the user supplied arguments.
    """

    if executable is None:
        executable = shutil.which(SERVICE_NAME)

    command = [executable] if executable else [sys.executable, "-m", SERVICE_NAME]
    return command + shlex.split(args or "")


def systemd_unit(command: list[str], home: Path) -> ServiceDescriptor:
    content = "\n".join(
        [
            "[Unit]",
            "Description=pollenwall - fresh pollens from Pollinations as your wallpaper",
            "After=graphical-session.target network-online.target",
            "PartOf=graphical-session.target",
            "",
            "[Service]",
            f"ExecStart={shlex.join(command)}",
            "Restart=on-failure",
            "RestartSec=10",
            "",
            "[Install]",
            "WantedBy=graphical-session.target",
            "",
        ]
    )

    return ServiceDescriptor(
        content=content,
        install_path=home / ".config" / "systemd" / "user" / f"{SERVICE_NAME}.service",
        instructions=f"systemctl --user daemon-reload && systemctl --user enable --now {SERVICE_NAME}.service",
    )


def launchd_agent(command: list[str], home: Path) -> ServiceDescriptor:
    agent = {
        "Label": LAUNCHD_LABEL,
        "ProgramArguments": command,
        "RunAtLoad": True,
        "KeepAlive": {"SuccessfulExit": False},
        "StandardErrorPath": str(home / "Library" / "Logs" / f"{SERVICE_NAME}.log"),
    }
    install_path = home / "Library" / "LaunchAgents" / f"{LAUNCHD_LABEL}.plist"

    return ServiceDescriptor(
        content=plistlib.dumps(agent).decode("utf-8"),
        install_path=install_path,
        instructions=f"launchctl load -w {install_path}",
    )


def windows_startup(command: list[str], home: Path) -> ServiceDescriptor:
    appdata = Path(os.environ.get("APPDATA", home / "AppData" / "Roaming"))
    startup = appdata / "Microsoft" / "Windows" / "Start Menu" / "Programs" / "Startup"

    return ServiceDescriptor(
        content=f'@echo off\r\nstart "" /min {subprocess.list2cmdline(command)}\r\n',
        install_path=startup / f"{SERVICE_NAME}.cmd",
        instructions="It will run the next time you sign in.",
    )


RENDERERS = {
    "linux": systemd_unit,
    "darwin": launchd_agent,
    "win32": windows_startup,
}


def render_service(
    platform: str = None, args: str = "", home: Path = None, executable: str = None
) -> ServiceDescriptor:
    """Render the service descriptor for platform (default: the running one)."""

    platform = platform or sys.platform
    renderer = RENDERERS.get(platform_key(platform, RENDERERS))

    if renderer is None:
        raise UnsupportedPlatformError(
            f"Generating a service is not supported on '{platform}'."
        )

    home = Path(home) if home is not None else Path.home()
    return renderer(pollenwall_command(args, executable), home)
