"""Application configuration for pv-inspect."""

import logging
import sys
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    CONFIG_FILE,
    DEFAULT_CREATE_TIMEOUT,
    DEFAULT_ESCAPE_CHARACTER,
    DEFAULT_SWEEP_AGE,
    ENV_PREFIX,
    ROOT_LOGGER,
)

__all__ = ["Config", "EnvFirstSettings"]


class EnvFirstSettings(BaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, extra="forbid", validate_by_name=True
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and environment variables should
        take precedence.
        """
        return (env_settings, init_settings)


class Config(EnvFirstSettings):
    """Configuration for pv-inspect."""

    context: Annotated[
        str | None,
        Field(
            title="Kubernetes context",
            description=(
                "Name of the kubeconfig context to use. If not set, the"
                " current context is used, falling back on in-cluster"
                " configuration."
            ),
        ),
    ] = None

    namespace: Annotated[
        str,
        Field(title="Default namespace"),
    ] = "default"

    template: Annotated[
        str,
        Field(title="Default pod template"),
    ] = "ssh"

    template_directory: Annotated[
        Path | None,
        Field(
            title="Directory of additional pod templates",
            description=(
                "Each :file:`{name}.yaml` file in this directory defines a"
                " template called ``name``, shadowing any built-in template"
                " of the same name."
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "TEMPLATE_DIRECTORY", "templateDirectory"
            ),
        ),
    ] = None

    create_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="How long to wait for Kubernetes to accept a new pod",
            validation_alias=AliasChoices(
                ENV_PREFIX + "CREATE_TIMEOUT", "createTimeout"
            ),
        ),
    ] = DEFAULT_CREATE_TIMEOUT

    ready_timeout: Annotated[
        HumanTimedelta | None,
        Field(
            title="How long to wait for the pod to become ready",
            description="If not set, wait indefinitely.",
            validation_alias=AliasChoices(
                ENV_PREFIX + "READY_TIMEOUT", "readyTimeout"
            ),
        ),
    ] = None

    delete_timeout: Annotated[
        HumanTimedelta | None,
        Field(
            title="How long to wait for pod deletion to be confirmed",
            description="If not set, wait indefinitely.",
            validation_alias=AliasChoices(
                ENV_PREFIX + "DELETE_TIMEOUT", "deleteTimeout"
            ),
        ),
    ] = None

    sweep_age: Annotated[
        HumanTimedelta,
        Field(
            title="Age after which the sweeper deletes a pod",
            validation_alias=AliasChoices(
                ENV_PREFIX + "SWEEP_AGE", "sweepAge"
            ),
        ),
    ] = DEFAULT_SWEEP_AGE

    escape_character: Annotated[
        str | None,
        Field(
            title="Escape character for the interactive session",
            description=(
                "After a newline, this character followed by ``.`` ends the"
                " session. Set to null to disable escape handling."
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "ESCAPE_CHARACTER", "escapeCharacter"
            ),
        ),
    ] = DEFAULT_ESCAPE_CHARACTER

    kubectl: Annotated[
        str,
        Field(title="kubectl executable used for port forwarding"),
    ] = "kubectl"

    sshfs: Annotated[
        str,
        Field(title="sshfs executable used for local mounts"),
    ] = "sshfs"

    debug: Annotated[
        bool,
        Field(
            title="Show debug output",
            description=(
                "If True, then log level will be set to debug and output"
                " will be human-readable."
            ),
        ),
    ] = False

    log_profile: Annotated[
        Profile,
        Field(
            title="Logging profile",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_PROFILE", "logProfile"
            ),
        ),
    ] = Profile.development

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_LEVEL", "logLevel"
            ),
        ),
    ] = LogLevel.INFO

    add_timestamp: Annotated[
        bool,
        Field(
            title="Add timestamp to log lines",
            validation_alias=AliasChoices(
                ENV_PREFIX + "ADD_TIMESTAMP", "addTimestamp"
            ),
        ),
    ] = False

    @field_validator("escape_character")
    @classmethod
    def _validate_escape_character(cls, v: str | None) -> str | None:
        if v is not None and len(v.encode()) != 1:
            raise ValueError("escape character must be a single ASCII byte")
        return v

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding configuration.
        """
        with path.open("r") as f:
            config = cls.model_validate(yaml.safe_load(f) or {})
        config.configure_logging()
        return config

    @classmethod
    def load(cls, path: Path | None = None) -> Self:
        """Load the configuration, tolerating a missing default file.

        Parameters
        ----------
        path
            Explicit configuration file. If given, it must exist.

        Returns
        -------
        Config
            Configuration from the file if there is one, otherwise from the
            environment and defaults.
        """
        if path is None:
            if not CONFIG_FILE.exists():
                config = cls()
                config.configure_logging()
                return config
            path = CONFIG_FILE
        return cls.from_file(path)

    def configure_logging(self) -> None:
        """Configure logging based on the configuration."""
        if self.debug:
            log_level = LogLevel.DEBUG
            log_profile = Profile.development
        else:
            log_level = self.log_level
            log_profile = self.log_profile

        configure_logging(
            profile=log_profile,
            log_level=log_level,
            add_timestamp=self.add_timestamp,
            name=ROOT_LOGGER,
        )

        # Standard output belongs to command output and the shell session.
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setStream(sys.stderr)
