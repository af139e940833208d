"""
Test wallpaper_handler

Validate that desktop background updates are issued correctly on every supported platform.

The desktop itself is never touched: the tools pollenwall shells out to are replaced with
unittest.mock.patch and the tests check what they would have been asked to do.

*** Fixtures ***
- test_image (defined in conftest.py)
- tmp_path (defined by Pytest)
"""

import subprocess
import unittest.mock
from pathlib import Path

import pytest

# following entities are tested in this module:
from pollenwall.wallpaper_handler import (
    GnomeWallpaper,
    MacWallpaper,
    UnsupportedPlatformError,
    UnsupportedWallpaper,
    WallpaperUpdateError,
    WindowsWallpaper,
    get_wallpaper_applier,
    validate_wallpaper,
)


@pytest.fixture
def mock_run():
    with unittest.mock.patch("pollenwall.wallpaper_handler.subprocess.run", autospec=True) as run:
        yield run


def test_gnome_sets_both_picture_keys(test_image, mock_run):
    GnomeWallpaper().apply(test_image)

    uri = test_image.resolve().as_uri()
    commands = [call.args[0] for call in mock_run.call_args_list]
    assert commands == [
        ["gsettings", "set", "org.gnome.desktop.background", "picture-uri", uri],
        ["gsettings", "set", "org.gnome.desktop.background", "picture-uri-dark", uri],
    ]


def test_gnome_without_dark_key(test_image, mock_run):
    """Before GNOME 42 there is no picture-uri-dark; that alone is not a failure."""

    mock_run.side_effect = [
        subprocess.CompletedProcess([], 0),
        subprocess.CalledProcessError(1, "gsettings", stderr="No such key “picture-uri-dark”"),
    ]

    GnomeWallpaper().apply(test_image)


@pytest.mark.parametrize(
    "error",
    [
        subprocess.CalledProcessError(1, "gsettings", stderr="No such schema"),
        FileNotFoundError("gsettings"),
        PermissionError("gsettings"),
    ],
)
def test_gnome_failure(test_image, mock_run, error):
    mock_run.side_effect = error

    with pytest.raises(WallpaperUpdateError):
        GnomeWallpaper().apply(test_image)


def test_mac(test_image, mock_run):
    MacWallpaper().apply(test_image)

    args = mock_run.call_args.args[0]
    assert args[:2] == ["osascript", "-e"]
    assert f'set picture to "{test_image.resolve()}"' in args[2]


def test_windows(test_image):
    windll = unittest.mock.Mock()
    windll.user32.SystemParametersInfoW.return_value = 1

    with unittest.mock.patch("pollenwall.wallpaper_handler.ctypes.windll", windll, create=True):
        with unittest.mock.patch("pollenwall.wallpaper_handler.time.sleep"):
            WindowsWallpaper().apply(test_image)

    windll.user32.SystemParametersInfoW.assert_called_once_with(
        20, 0, str(test_image.resolve()), 3
    )


def test_windows_api_missing(test_image):
    with unittest.mock.patch("pollenwall.wallpaper_handler.ctypes.windll", None, create=True):
        with pytest.raises(UnsupportedPlatformError):
            WindowsWallpaper().apply(test_image)


def test_unsupported_platform(test_image):
    with pytest.raises(UnsupportedPlatformError, match="plan9"):
        UnsupportedWallpaper("plan9").apply(test_image)


@pytest.mark.parametrize(
    "platform, applier",
    [
        ("linux", GnomeWallpaper),
        ("linux2", GnomeWallpaper),
        ("freebsd13", GnomeWallpaper),
        ("darwin", MacWallpaper),
        ("win32", WindowsWallpaper),
        ("plan9", UnsupportedWallpaper),
    ],
)
def test_get_wallpaper_applier(platform, applier):
    assert isinstance(get_wallpaper_applier(platform), applier)


def test_validate_wallpaper(test_image):
    assert validate_wallpaper(str(test_image)) == test_image.resolve()


@pytest.mark.parametrize(
    "img_path",
    [
        "",
        "/not/a/real/absolute/path.jpg",
        42,
        Path().rglob("not_an_image.txt"),
    ],
)
def test_validate_wallpaper_failure(img_path):
    """
    Validate that invalid inputs are rejected before any desktop tool is called:
    - empty path
    - invalid path
    - invalid data type (e.g. instead of str)
    """

    with pytest.raises(WallpaperUpdateError):
        validate_wallpaper(img_path)


def test_validate_wallpaper_not_an_image(tmp_path, mock_run):
    text_file = tmp_path / "not_an_image.jpg"
    text_file.write_text("pollen")

    with pytest.raises(WallpaperUpdateError):
        GnomeWallpaper().apply(text_file)

    mock_run.assert_not_called()


def test_validate_wallpaper_unreadable(test_image):
    with unittest.mock.patch(
        "pollenwall.wallpaper_handler.Image.open", side_effect=PermissionError("denied")
    ):
        with pytest.raises(WallpaperUpdateError, match="denied"):
            validate_wallpaper(test_image)
