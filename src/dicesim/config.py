"""
Configuration for the dice-roll telemetry generator.

Settings are resolved from three sources, lowest precedence first:

1. A dotenv file (default ``.env`` in the working directory), merged into the
   environment without overriding variables that are already set.
2. Environment variables (COLLECTOR_GRPC_URL, COLLECTOR_HTTP_URL, SERVICE_NAME,
   DEBUG_URL).
3. Command-line flags (--collector-grpc-url, ...) passed explicitly.

All four settings are required; every missing one is reported in a single error.
"""

import argparse
import os
import sys
import threading
from collections.abc import MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values
from dotenv.parser import parse_stream

DEFAULT_ENV_FILE = ".env"


@dataclass(frozen=True)
class _Setting:
    field: str
    env: str
    flag: str
    help: str
    label: str


# Order matters: errors are reported in this order.
SETTINGS: tuple[_Setting, ...] = (
    _Setting(
        "collector_grpc_url",
        "COLLECTOR_GRPC_URL",
        "--collector-grpc-url",
        "the collector grpc endpoint (traces)",
        "collector grpc endpoint",
    ),
    _Setting(
        "collector_http_url",
        "COLLECTOR_HTTP_URL",
        "--collector-http-url",
        "the collector http endpoint (metrics and logs)",
        "collector http endpoint",
    ),
    _Setting(
        "service_name",
        "SERVICE_NAME",
        "--service-name",
        "the service name attached to all telemetry",
        "service name",
    ),
    _Setting(
        "debug_url",
        "DEBUG_URL",
        "--debug-url",
        "the bind address of the diagnostic HTTP server",
        "debug endpoint",
    ),
)


class ConfigError(ValueError):
    """Invalid configuration; ``problems`` lists every violation found."""

    def __init__(self, problems: Sequence[str]):
        self.problems = list(problems)
        super().__init__("\n".join(self.problems))


class DotenvError(ConfigError):
    """The dotenv file exists but could not be read or parsed."""


@dataclass(frozen=True)
class Config:
    """Resolved settings; read-only for the lifetime of the process."""

    collector_grpc_url: str = ""
    collector_http_url: str = ""
    service_name: str = ""
    debug_url: str = ""

    def validate(self) -> None:
        """Raise ConfigError naming every required field that is empty."""
        problems = [f"{s.label} required" for s in SETTINGS if not getattr(self, s.field)]
        if problems:
            raise ConfigError(problems)


class FlagRegistry:
    """Command-line flags for the settings, registered at most once each.

    The argument list is parsed once per registry; later resolutions reuse the
    cached result so explicitly passed flags keep winning.
    """

    def __init__(self, parser: argparse.ArgumentParser | None = None):
        self.parser = parser or argparse.ArgumentParser(allow_abbrev=False)
        self._registered: dict[str, bool] = {}
        self._parsed: argparse.Namespace | None = None
        self._lock = threading.Lock()

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return self._registered.get(name, False)

    def register(self, name: str, flag: str, help: str) -> bool:
        """Add ``flag`` storing into ``name``; return False if it was already there."""
        with self._lock:
            if self._registered.get(name):
                return False
            # None default: lets resolution tell "not passed" from "passed empty".
            self.parser.add_argument(flag, dest=name, type=str, default=None, help=help)
            self._registered[name] = True
            return True

    def parse(self, argv: Sequence[str] | None = None) -> argparse.Namespace:
        """Parse ``argv`` (default: sys.argv[1:]) on first call; return the cached result after."""
        with self._lock:
            if self._parsed is None:
                args = list(sys.argv[1:] if argv is None else argv)
                self._parsed, _ = self.parser.parse_known_args(args)
            return self._parsed


DEFAULT_REGISTRY = FlagRegistry()


def _load_env_file(path: Path, environ: MutableMapping[str, str]) -> None:
    """Merge KEY=VALUE pairs from ``path`` into ``environ``; existing keys win."""
    try:
        with path.open(encoding="utf-8") as f:
            bindings = list(parse_stream(f))
    except (OSError, UnicodeDecodeError) as err:
        raise DotenvError([f"loading {path}: {err}"]) from err

    bad_lines = [b.original.line for b in bindings if b.error]
    if bad_lines:
        raise DotenvError(
            [f"loading {path}: could not parse statement at line {n}" for n in bad_lines]
        )

    for key, value in dotenv_values(path, encoding="utf-8").items():
        if value is None or key in environ:
            continue
        environ[key] = value


def load_config(
    path: str | Path | None = None,
    registry: FlagRegistry | None = None,
    argv: Sequence[str] | None = None,
    environ: MutableMapping[str, str] | None = None,
) -> Config:
    """
    Resolve the configuration from dotenv file, environment and flags.

    Args:
        path: dotenv file; defaults to ``.env``. A missing file is not an error.
        registry: flag registry; defaults to the process-wide DEFAULT_REGISTRY
        argv: arguments to parse on the registry's first resolution
        environ: environment mapping; defaults to os.environ (mutated by the file merge)

    Returns:
        Validated Config

    Raises:
        DotenvError: the dotenv file is malformed
        ConfigError: one or more required settings are empty
    """
    env = os.environ if environ is None else environ
    env_file = Path(path or DEFAULT_ENV_FILE)
    if env_file.is_file():
        _load_env_file(env_file, env)

    reg = registry if registry is not None else DEFAULT_REGISTRY
    for setting in SETTINGS:
        reg.register(setting.field, setting.flag, f"{setting.help} (env: {setting.env})")
    args = reg.parse(argv)

    values: dict[str, str] = {}
    for setting in SETTINGS:
        explicit = getattr(args, setting.field, None)
        values[setting.field] = explicit if explicit is not None else env.get(setting.env, "")

    cfg = Config(**values)
    cfg.validate()
    return cfg
