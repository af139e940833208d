"""
Wallpaper Handler

Sets a local image as the desktop background. There is one small applier class per desktop
platform, all with the same single method:

    applier.apply(img_path)

get_wallpaper_applier() picks the right one for the running platform.

- GNOME: drops into the gsettings CLI and updates picture-uri (and picture-uri-dark on
  GNOME 42+) of the org.gnome.desktop.background schema. More information on this schema:
  https://github.com/GNOME/gsettings-desktop-schemas/blob/master/schemas/org.gnome.desktop.background.gschema.xml.in
- macOS: asks System Events through osascript to set the picture of every desktop.
- Windows: calls SystemParametersInfoW from user32 through ctypes.

On any other platform the applier raises UnsupportedPlatformError.
"""

import sys
import time
import ctypes
import logging
import subprocess
from pathlib import Path
from collections import OrderedDict
from typing import Protocol

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

GNOME_SCHEMA = "org.gnome.desktop.background"

# Windows shows a black desktop when the wallpaper is set right after the file was written
WALLPAPER_SET_DELAY = 0.1

SPI_SETDESKWALLPAPER = 20
SPIF_UPDATEINIFILE = 0x01
SPIF_SENDCHANGE = 0x02


class WallpaperUpdateError(Exception):
    """
    Raised when an attempt to update the desktop background fails.
    """

    pass


class UnsupportedPlatformError(Exception):
    """
    Raised when pollenwall does not know how to do something on the running platform.
    """

    pass


class WallpaperApplier(Protocol):
    def apply(self, img_path: Path) -> None:
        ...


def validate_wallpaper(img_path) -> Path:
    """
    Make sure img_path points at an existing image and return its absolute path. Desktop
    environments do not validate the path themselves; GNOME for instance silently shows a
    plain colour for a missing file.
    """

    try:
        wallpaper_location = Path(img_path).expanduser().resolve()
    except TypeError:
        raise WallpaperUpdateError(
            f"Invalid parameter: {img_path} is not a valid Pathlike object."
        )

    # subsequent operations will fail if path does not exist or is not a file, so catch this.
    if not wallpaper_location.exists() or not wallpaper_location.is_file():
        raise WallpaperUpdateError(
            f"Invalid path provided for image location: {img_path} does not exist."
        )

    try:
        with Image.open(wallpaper_location):
            pass
    except UnidentifiedImageError:
        raise WallpaperUpdateError(
            f"Invalid image type provided. {wallpaper_location.name} is not a valid image."
        )
    # removed or unreadable in the meantime
    except OSError as error:
        raise WallpaperUpdateError(f"Could not read {wallpaper_location.name}: {error}")

    return wallpaper_location


def _run(args: list, action: str) -> subprocess.CompletedProcess:
    """
    subprocess.CalledProcessError is raised by run() if a non-zero exit status is returned,
    OSError (FileNotFoundError, PermissionError) if the program cannot be started. Both mean
    the update failed.
    """

    try:
        return subprocess.run(
            args,
            check=True,
            text=True,
            stdin=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            stdout=subprocess.PIPE,
        )

    except subprocess.CalledProcessError as error:
        raise WallpaperUpdateError(
            f"Could not {action}: {(error.stderr or '').strip() or error}"
        )

    except OSError as error:
        raise WallpaperUpdateError(f"Could not {action}: {error}")


class GnomeWallpaper:
    def apply(self, img_path: Path) -> None:
        wallpaper_location = validate_wallpaper(img_path)

        # ordered dict keeps the command readable and the argument sequence intact
        set_desktop_background = OrderedDict(
            [
                ("cmd", "gsettings"),
                ("subcmd", "set"),
                ("schema", GNOME_SCHEMA),
                ("key", "picture-uri"),
                ("value", wallpaper_location.as_uri()),
            ]
        )
        _run(list(set_desktop_background.values()), "set desktop background")

        # GNOME 42+ keeps a separate picture for dark mode, older versions lack the key
        set_desktop_background["key"] = "picture-uri-dark"
        try:
            _run(list(set_desktop_background.values()), "set dark desktop background")
        except WallpaperUpdateError as error:
            logger.debug("%s", error)


class MacWallpaper:
    def apply(self, img_path: Path) -> None:
        wallpaper_location = validate_wallpaper(img_path)

        escaped = str(wallpaper_location).replace("\\", "\\\\").replace('"', '\\"')
        script = (
            'tell application "System Events" to tell every desktop '
            f'to set picture to "{escaped}"'
        )
        _run(["osascript", "-e", script], "set desktop background")


class WindowsWallpaper:
    def apply(self, img_path: Path) -> None:
        wallpaper_location = validate_wallpaper(img_path)

        windll = getattr(ctypes, "windll", None)
        if windll is None:
            raise UnsupportedPlatformError("The Windows wallpaper API is not available here.")

        time.sleep(WALLPAPER_SET_DELAY)

        updated = windll.user32.SystemParametersInfoW(
            SPI_SETDESKWALLPAPER,
            0,
            str(wallpaper_location),
            SPIF_UPDATEINIFILE | SPIF_SENDCHANGE,
        )
        if not updated:
            raise WallpaperUpdateError(
                f"Could not set desktop background: {ctypes.WinError()}"
            )


class UnsupportedWallpaper:
    def __init__(self, platform: str):
        self.platform = platform

    def apply(self, img_path: Path) -> None:
        raise UnsupportedPlatformError(
            f"Setting the wallpaper is not supported on '{self.platform}'."
        )


APPLIERS = {
    "linux": GnomeWallpaper,
    "freebsd": GnomeWallpaper,
    "darwin": MacWallpaper,
    "win32": WindowsWallpaper,
}


def platform_key(platform: str, table: dict = APPLIERS) -> str:
    """Normalise sys.platform values like 'linux2' or 'freebsd13' to the keys of table."""

    for key in table:
        if platform.startswith(key):
            return key
    return platform


def get_wallpaper_applier(platform: str = None) -> WallpaperApplier:
    platform = platform or sys.platform
    applier = APPLIERS.get(platform_key(platform))

    if applier is None:
        return UnsupportedWallpaper(platform)

    return applier()
