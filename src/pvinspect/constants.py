"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "CONFIG_FILE",
    "CONFIG_FILE_ENV_VAR",
    "DEFAULT_CREATE_TIMEOUT",
    "DEFAULT_ESCAPE_CHARACTER",
    "DEFAULT_SWEEP_AGE",
    "ENV_PREFIX",
    "EXIT_FAILURE",
    "FIELD_MANAGER",
    "GENERATE_NAME_LENGTH",
    "HELPER_STOP_TIMEOUT",
    "LABEL_ACTIVE",
    "LABEL_DELETE",
    "LABEL_KEY",
    "MOUNT_PATH",
    "NAME_PREFIX",
    "PUBLIC_KEY_ENV",
    "READY_SETTLE_DELAY",
    "ROOT_LOGGER",
    "VOLUME_NAME",
]

CONFIG_FILE = Path.home() / ".config" / "pv-inspect" / "config.yaml"
"""Default path to the optional user configuration file."""

CONFIG_FILE_ENV_VAR = "PV_INSPECT_CONFIG_FILE"
"""Environment variable that overrides the configuration file path."""

DEFAULT_CREATE_TIMEOUT = timedelta(seconds=30)
"""How long to wait for Kubernetes to accept a new inspection pod."""

DEFAULT_ESCAPE_CHARACTER = "~"
"""Escape character that, after a newline and followed by ``.``, disconnects.

This matches the OpenSSH client convention so that operators used to
``ssh`` can leave a session the same way.
"""

DEFAULT_SWEEP_AGE = timedelta(minutes=240)
"""Pods older than this are removed by the stale pod sweeper."""

ENV_PREFIX = "PV_INSPECT_"
"""Prefix for environment variables overriding configuration settings."""

EXIT_FAILURE = 2
"""Process exit status for any top-level failure."""

FIELD_MANAGER = "pv-inspect"
"""Field manager used for server-side apply patches."""

GENERATE_NAME_LENGTH = 58
"""Maximum length of the pod ``generateName`` prefix.

Kubernetes appends five random characters, and pod host names are limited to
63 characters.
"""

HELPER_STOP_TIMEOUT = timedelta(seconds=5)
"""How long to wait for a killed helper process to exit."""

LABEL_KEY = "pv-inspect"
"""Marker label carried by every pod created by pv-inspect."""

LABEL_ACTIVE = "active"
"""Marker label value for a pod whose session is in progress."""

LABEL_DELETE = "delete"
"""Marker label value requesting deletion by the stale pod sweeper.

Sessions set this before deleting their pod, so that a pod the operator was
not allowed to delete is still reaped by a privileged sweeper.
"""

MOUNT_PATH = "/data"
"""Path inside the pod at which the claim is mounted."""

NAME_PREFIX = "pvc-inspect-"
"""Prefix of generated pod names."""

PUBLIC_KEY_ENV = "PUBLIC_KEY"
"""Environment variable carrying the session public key into the pod."""

READY_SETTLE_DELAY = timedelta(seconds=1)
"""Pause after the pod is ready before connecting to it."""

ROOT_LOGGER = "pvinspect"
"""Name of the root logger."""

VOLUME_NAME = "data"
"""Name of the pod volume referencing the inspected claim."""
