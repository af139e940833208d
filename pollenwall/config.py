"""
pollenwall Configuration Management

Loads tuning values from an optional config file and resolves the home directory, the
cache directory and the address of the Pollinations IPFS node. Raise a PollenwallConfigError
for any issue found here: these are startup errors and end the program with a non-zero
exit code.

The configuration file is "config.json", looked up in the directory named by the
POLLENWALL_CONFIG_DIR environment variable or else ~/.config/pollenwall. It is a flat JSON
object whose keys are the field names of PollenwallConfig, e.g.

    {
        "interval": 20,
        "keep_history": true
    }

Values given on the command line take precedence over the file.
"""

import json
import os
import ipaddress
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

APP_FOLDER_NAME = ".pollenwall"
DEFAULT_ADDRESS = "/ip4/65.108.44.19/tcp/5005"
API_PATH = "/api/v0"


class PollenwallConfigError(Exception):
    """Raise when an issue occurs with handling pollenwall configuration."""

    pass


# accepted types and lower bound of the numeric settings
_NUMBER_LIMITS = {
    "interval": ((int, float), 1.0),
    "listen_window": ((int, float), 0.0),
    "stale_cycles": (int, 0),
    "max_downloads": (int, 1),
    "request_timeout": ((int, float), 1.0),
}


@dataclass
class PollenwallConfig:
    """
    Settings for a pollenwall run. home and cache_dir stay None until resolve() fills
    them in, so that a config file may set either one or neither.
    """

    home: Optional[Path] = None
    cache_dir: Optional[Path] = None
    address: str = DEFAULT_ADDRESS
    interval: float = 10.0
    listen_window: float = 5.0
    stale_cycles: int = 30
    max_downloads: int = 4
    request_timeout: float = 30.0
    keep_history: bool = False

    def __post_init__(self):
        """
        Check every value, whether it came from the config file or the command line. JSON
        cannot hold a Path, so the path fields are coerced here as well.
        """

        for name in ("home", "cache_dir"):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, (str, Path)):
                raise PollenwallConfigError(f"'{name}' must be a path, got {value!r}.")
            setattr(self, name, Path(value).expanduser())

        if not isinstance(self.address, str):
            raise PollenwallConfigError(f"'address' must be a string, got {self.address!r}.")

        if not isinstance(self.keep_history, bool):
            raise PollenwallConfigError(
                f"'keep_history' must be true or false, got {self.keep_history!r}."
            )

        for name, (kind, minimum) in _NUMBER_LIMITS.items():
            value = getattr(self, name)
            # bool is an int too
            if isinstance(value, bool) or not isinstance(value, kind):
                raise PollenwallConfigError(f"'{name}' must be a number, got {value!r}.")
            if value < minimum:
                raise PollenwallConfigError(
                    f"'{name}' must be at least {minimum}, got {value!r}."
                )

    def override(self, **kwargs) -> "PollenwallConfig":
        """Return a copy with every keyword that is not None applied."""

        return replace(self, **{key: value for key, value in kwargs.items() if value is not None})

    def resolve(self) -> "PollenwallConfig":
        """
        Fill in home and cache_dir. The cache directory defaults to ~/.pollenwall; when the
        home directory cannot be determined the user has to name it with --home.
        """

        home = self.home
        if home is None:
            try:
                home = Path.home()
            except RuntimeError:
                raise PollenwallConfigError(
                    "'pollenwall' couldn't determine the location of your home directory, "
                    "to help it please run it with '--home <absolute-path-to-your-home-directory>'"
                )

        cache_dir = self.cache_dir if self.cache_dir is not None else home / APP_FOLDER_NAME

        return replace(self, home=home, cache_dir=cache_dir)


def config_path() -> Path:
    try:
        return Path(os.environ["POLLENWALL_CONFIG_DIR"]).expanduser() / "config.json"
    except KeyError:
        return Path("~/.config/pollenwall/config.json").expanduser()


def load_config(path: Path = None) -> PollenwallConfig:
    """
    Load config.json and instantiate it as a PollenwallConfig. A missing file gives the
    defaults; a malformed one raises PollenwallConfigError.
    """

    path = Path(path) if path is not None else config_path()

    try:
        with path.open("r") as file:
            from_json = json.loads(file.read())

    except FileNotFoundError:
        return PollenwallConfig()

    except json.JSONDecodeError as error:
        raise PollenwallConfigError(f"There was an issue reading the config {path}: {error}")

    except OSError as error:
        raise PollenwallConfigError(f"There was an issue opening the config {path}: {error}")

    if not isinstance(from_json, dict):
        raise PollenwallConfigError(f"The config {path} must hold a JSON object.")

    known = {field.name for field in fields(PollenwallConfig)}
    unknown = sorted(set(from_json) - known)
    if unknown:
        raise PollenwallConfigError(
            f"Unknown setting(s) in {path}: {', '.join(unknown)}"
        )

    return PollenwallConfig(**from_json)


def parse_address(address: str) -> str:
    """
    Turn the address of an IPFS node into the base url of its HTTP API.

    Both multiaddrs and plain urls are accepted:

        /ip4/65.108.44.19/tcp/5005          -> http://65.108.44.19:5005/api/v0
        /dns4/node.example.com/tcp/443/https -> https://node.example.com:443/api/v0
        http://localhost:5001               -> http://localhost:5001/api/v0
    """

    address = (address or "").strip()

    if address.startswith("/"):
        return _parse_multiaddr(address)

    url = urlparse(address)
    if url.scheme in ("http", "https") and url.hostname:
        try:
            url.port
        except ValueError:
            raise PollenwallConfigError(f"Invalid port in address '{address}'.")
        path = url.path.rstrip("/") or API_PATH
        return f"{url.scheme}://{url.netloc}{path}"

    raise PollenwallConfigError(
        f"Invalid address '{address}'. Use a multiaddr like {DEFAULT_ADDRESS} or an http(s) url."
    )


def _parse_multiaddr(address: str) -> str:
    parts = address.strip("/").split("/")

    if len(parts) not in (4, 5) or parts[2] != "tcp":
        raise PollenwallConfigError(
            f"Invalid address '{address}'. Expected a multiaddr like {DEFAULT_ADDRESS}."
        )

    protocol, host, _, port = parts[:4]
    scheme = parts[4] if len(parts) == 5 else "http"

    if scheme not in ("http", "https"):
        raise PollenwallConfigError(f"Unsupported protocol '/{scheme}' in address '{address}'.")

    try:
        if protocol == "ip4":
            host = str(ipaddress.IPv4Address(host))
        elif protocol == "ip6":
            host = f"[{ipaddress.IPv6Address(host)}]"
        elif protocol not in ("dns", "dns4", "dns6") or not host:
            raise PollenwallConfigError(
                f"Unsupported protocol '/{protocol}' in address '{address}'."
            )
    except ValueError:
        raise PollenwallConfigError(f"Invalid host '{host}' in address '{address}'.")

    if not port.isdigit() or not 0 < int(port) < 65536:
        raise PollenwallConfigError(f"Invalid port '{port}' in address '{address}'.")

    return f"{scheme}://{host}:{int(port)}{API_PATH}"
