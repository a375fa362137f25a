"""
=============================================================================
CONFIG FILE LOADER
=============================================================================

Finds, parses and validates the optional config file of a served
directory, and turns it into a ServeConfig.

=============================================================================
DISCOVERY
=============================================================================

Candidates are tried in order; the first one that exists wins and the rest
are never opened:

    ┌──────────────────────────┬───────────────────────┬─────────────────┐
    │ file (relative to entry) │ settings live under   │ note            │
    ├──────────────────────────┼───────────────────────┼─────────────────┤
    │ --config <path>          │ top level             │ only if given   │
    │ serve.json               │ top level             │                 │
    │ now.json                 │ "static"              │ deprecated      │
    │ package.json             │ "now" → "static"      │ deprecated      │
    └──────────────────────────┴───────────────────────┴─────────────────┘

    missing file                     → next candidate
    unreadable file                  → ConfigReadError   (exit 1)
    invalid JSON                     → ConfigParseError  (exit 1)
    JSON but not an object           → warning, next candidate
    now.json without "static" etc.   → next candidate
    schema violation                 → SchemaValidationError (exit 1)

`ssi`, `charset` and `listen` are accepted in the file but are not part of
the static-serving schema, so they are set aside before validation.

=============================================================================
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import jsonschema

from .config import HeaderRule, Redirect, Rewrite, ServeConfig


logger = logging.getLogger(__name__)

CONFIG_FILES = ("serve.json", "now.json", "package.json")
DEPRECATED_FILES = ("now.json", "package.json")

# Keys understood here but outside the static-serving schema
EXCEPTION_KEYS = ("ssi", "charset", "listen")

_GLOB_LIST = {"type": "array", "items": {"type": "string", "minLength": 1}}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "public": {"type": "string"},
        "cleanUrls": {"oneOf": [{"type": "boolean"}, _GLOB_LIST]},
        "rewrites": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["source", "destination"],
                "properties": {
                    "source": {"type": "string", "minLength": 1},
                    "destination": {"type": "string", "minLength": 1},
                },
            },
        },
        "redirects": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["source", "destination"],
                "properties": {
                    "source": {"type": "string", "minLength": 1},
                    "destination": {"type": "string", "minLength": 1},
                    "type": {"type": "integer", "enum": [301, 302, 307, 308]},
                },
            },
        },
        "headers": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["source", "headers"],
                "properties": {
                    "source": {"type": "string", "minLength": 1},
                    "headers": {
                        "type": "array",
                        "minItems": 1,
                        "items": {
                            "type": "object",
                            "additionalProperties": False,
                            "required": ["key", "value"],
                            "properties": {
                                "key": {"type": "string", "minLength": 1, "pattern": "^[A-Za-z0-9-]+$"},
                                "value": {"type": "string"},
                            },
                        },
                    },
                },
            },
        },
        "directoryListing": {"oneOf": [{"type": "boolean"}, _GLOB_LIST]},
        "unlisted": _GLOB_LIST,
        "trailingSlash": {"type": "boolean"},
        "renderSingle": {"type": "boolean"},
        "symlinks": {"type": "boolean"},
        "etag": {"type": "boolean"},
    },
}

# Type checks for EXCEPTION_KEYS, applied on their own
EXCEPTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "ssi": {"type": ["string", "null"]},
        "charset": {"type": ["string", "null"]},
        "listen": {
            "anyOf": [
                {"type": ["string", "integer", "null"]},
                {"type": "array", "items": {"type": ["string", "integer"]}},
            ],
        },
    },
}


# ─────────────────────────────────────────────────────────────────────────────
# ERRORS
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Base class for config file problems. All of them are fatal."""


class ConfigReadError(ConfigError):
    def __init__(self, location: Path, reason: str):
        super().__init__(f"Not able to read {location}: {reason}")
        self.location = location


class ConfigParseError(ConfigError):
    def __init__(self, location: Path, reason: str):
        super().__init__(f"Could not parse {location} as JSON: {reason}")
        self.location = location


class SchemaValidationError(ConfigError):
    """The file parsed but does not fit the schema."""

    def __init__(self, message: str, field: str):
        super().__init__(f"The configuration you provided is wrong: {field}: {message}")
        self.field = field


# ─────────────────────────────────────────────────────────────────────────────
# DISCOVERY
# ─────────────────────────────────────────────────────────────────────────────

def discover_config(entry: Path, config_path: Optional[str] = None) -> Tuple[Optional[str], Dict[str, Any]]:
    """
    Find and parse the first config file under `entry`.

    Returns:
        (file name, settings dict), or (None, {}) if nothing was found.

    Raises:
        ConfigReadError: A candidate exists but can't be read.
        ConfigParseError: A candidate is not valid JSON.
    """
    files: List[str] = list(CONFIG_FILES)
    if config_path:
        files.insert(0, config_path)

    for name in files:
        location = entry / name

        try:
            text = location.read_text(encoding="utf-8")
        except FileNotFoundError:
            continue
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigReadError(location, str(e)) from e

        try:
            content = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigParseError(location, str(e)) from e

        if not isinstance(content, dict):
            logger.warning(f"Didn't find a valid object in {location}. Skipping...")
            continue

        if name == "now.json":
            content = content.get("static")
        elif name == "package.json":
            content = (content.get("now") or {}).get("static")

        if not isinstance(content, dict):
            continue

        logger.info(f"Discovered configuration in `{name}`")
        if name in DEPRECATED_FILES:
            logger.warning("The config files `now.json` and `package.json` are deprecated. Please use `serve.json`.")

        return name, content

    return None, {}


def validate_settings(settings: Dict[str, Any]) -> None:
    """
    Validate file settings against CONFIG_SCHEMA, and the EXCEPTION_KEYS
    against EXCEPTION_SCHEMA.

    Raises:
        SchemaValidationError: Naming the first offending field.
    """
    extras = {key: settings[key] for key in EXCEPTION_KEYS if key in settings}
    filtered = {key: value for key, value in settings.items() if key not in EXCEPTION_KEYS}

    for instance, schema in ((extras, EXCEPTION_SCHEMA), (filtered, CONFIG_SCHEMA)):
        if not instance:
            continue
        try:
            jsonschema.validate(instance=instance, schema=schema)
        except jsonschema.ValidationError as e:
            field = "/".join(str(part) for part in e.absolute_path) or "(root)"
            raise SchemaValidationError(e.message, field) from e


# ─────────────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────────────

def load_config(
    cwd: Union[str, Path],
    entry: Union[str, Path],
    config_path: Optional[str] = None,
    public: Optional[str] = None,
) -> ServeConfig:
    """
    Build a ServeConfig from the config file found under `entry`.

    Args:
        cwd: Working directory; `public` ends up relative to it.
        entry: The directory given on the command line (or cwd).
        config_path: --config value, tried before the standard names.
        public: --public value; a `public` in the file wins over it.

    Raises:
        ConfigError: Any unreadable, unparsable or invalid config file.
    """
    entry = Path(entry)
    _, settings = discover_config(entry, config_path)
    validate_settings(settings)

    chosen_public = settings.get("public") or public
    served = entry / chosen_public if chosen_public else entry

    config = ServeConfig(
        public=os.path.relpath(served, cwd),
        charset=settings.get("charset") or None,
        ssi=settings.get("ssi") or None,
        listen=_as_list(settings.get("listen")),
        rewrites=[Rewrite(r["source"], r["destination"]) for r in settings.get("rewrites", [])],
        redirects=[
            Redirect(r["source"], r["destination"], r.get("type", 301))
            for r in settings.get("redirects", [])
        ],
        headers=[
            HeaderRule(rule["source"], {h["key"]: h["value"] for h in rule["headers"]})
            for rule in settings.get("headers", [])
        ],
        directory_listing=settings.get("directoryListing", True),
        unlisted=list(settings.get("unlisted", [])),
        render_single=settings.get("renderSingle", False),
        symlinks=settings.get("symlinks", False),
        etag=settings.get("etag", True),
    )

    # cleanUrls / trailingSlash validate fine but are pinned by ServeConfig
    for key in ("cleanUrls", "trailingSlash"):
        if key in settings:
            logger.debug(f"Ignoring `{key}` from config file, it is fixed for this server")

    return config


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        return [str(value)]
    return [str(item) for item in value]
