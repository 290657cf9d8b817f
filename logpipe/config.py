"""Configuration: frozen dataclass built from defaults, YAML, env vars and CLI args."""

import argparse
import logging
import math
import os
import re
from dataclasses import dataclass

import requests
import yaml

from logpipe.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://log-api.newrelic.com/log/v1"

# New Relic documents a 1MiB plaintext limit per request; stay a KiB under it.
HIGH_WATER_MARK = 1024 * 1023

USAGE = """
NAME
	logpipe - pipe logs to newrelic

SYNOPSIS
	export NR_KEY=""
	export NR_URL="" # optional
	echo hi newrelic | logpipe
	app 2>&1 | logpipe [-f flushdur] [-t httptimeout] [-debug] [-echo]

DESCRIPTION
	Logpipe sends every line read from its standard input to
	newrelic as a log line. If the log line is valid json, and contains
	an integer "ts" field at its top level, that value is used as the
	newrelic timestamp.

	Logpipe will automatically batch log lines. See FLAGS

	Set at least NR_KEY to your newrelic license key and run
	the examples as above. If you are in a different region, set
	$NR_URL too. Settings may also be read from a YAML file given
	with -c (keys: key, url, flush, timeout, debug, echo).

FLAGS"""

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def parse_duration(value) -> float:
    """Parse ``5s``, ``250ms``, ``1m30s`` or a bare number of seconds.

    Raises ConfigError for anything else, or for a non-positive duration.
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos == 0 or pos != len(text):
                raise ConfigError(f"invalid duration {value!r}") from None
    if not math.isfinite(seconds) or seconds <= 0:
        raise ConfigError(f"duration must be positive, got {value!r}")
    return seconds


def validate_url(url: str) -> str:
    """Reject endpoints that requests could never POST to."""
    try:
        requests.PreparedRequest().prepare_url(url, None)
    except requests.exceptions.RequestException as exc:
        raise ConfigError(f"bad newrelic endpoint {url!r}: {exc}") from exc
    if not url.lower().startswith(("http://", "https://")):
        raise ConfigError(f"bad newrelic endpoint {url!r}: scheme must be http or https")
    return url


@dataclass(frozen=True)
class Config:
    api_key: str = ""
    url: str = DEFAULT_URL
    flush_interval: float = 5.0
    http_timeout: float = 5.0
    high_water_mark: int = HIGH_WATER_MARK
    queue_size: int = 256
    debug: bool = False
    echo: bool = False


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns an empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    logger.debug("Loaded YAML config from %s", path)
    return data


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logpipe",
        description=USAGE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        usage=argparse.SUPPRESS,
    )
    parser.add_argument(
        "-f", dest="flush", default=None,
        help="flush logs after this duration (default 5s)",
    )
    parser.add_argument(
        "-t", dest="timeout", default=None,
        help="http timeout (default 5s)",
    )
    parser.add_argument(
        "-u", "--url", default=None,
        help="log api endpoint, overrides $NR_URL",
    )
    parser.add_argument(
        "-c", "--config", default=None,
        help="YAML file with default settings",
    )
    parser.add_argument(
        "-debug", "--debug", action="store_true", default=None,
        help="debug output to stderr",
    )
    parser.add_argument(
        "-echo", "--echo", action="store_true", default=None,
        help="copy every input line to stdout",
    )
    return parser


def load_config(argv: list[str] | None = None, environ=None) -> Config:
    """Build Config from defaults <- YAML file <- env vars <- CLI args.

    Pass argv and environ for testability; when None, argparse reads
    sys.argv and os.environ is used.
    """
    if environ is None:
        environ = os.environ
    args = build_cli_parser().parse_args(argv)

    yaml_data = load_yaml_config(args.config or environ.get("LOGPIPE_CONFIG"))

    def pick(cli_value, env_name, yaml_key, default):
        if cli_value is not None:
            return cli_value
        if environ.get(env_name):
            return environ[env_name]
        if yaml_data.get(yaml_key) is not None:
            return yaml_data[yaml_key]
        return default

    api_key = str(environ.get("NR_KEY") or yaml_data.get("key") or "")
    if not api_key:
        raise ConfigError("provide license via $NR_KEY (export NR_KEY=...)")

    url = str(pick(args.url, "NR_URL", "url", DEFAULT_URL))

    return Config(
        api_key=api_key,
        url=validate_url(url),
        flush_interval=parse_duration(pick(args.flush, "LOGPIPE_FLUSH", "flush", Config.flush_interval)),
        http_timeout=parse_duration(pick(args.timeout, "LOGPIPE_TIMEOUT", "timeout", Config.http_timeout)),
        debug=_parse_bool(pick(args.debug, "LOGPIPE_DEBUG", "debug", False)),
        echo=_parse_bool(pick(args.echo, "LOGPIPE_ECHO", "echo", False)),
    )
