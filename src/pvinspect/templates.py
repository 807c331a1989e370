"""Loading of inspection pod templates."""

from importlib.resources import files
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from .exceptions import InvalidTemplateError, TemplateNotFoundError
from .models.domain.template import PodTemplate

__all__ = ["TemplateLoader"]


class TemplateLoader:
    """Find and parse pod templates.

    Built-in templates ship in the ``pvinspect/data`` directory. Templates
    in an optional user directory shadow built-in templates of the same name.
    A template may also be given as a path to a YAML file.

    Parameters
    ----------
    directory
        Additional directory of :file:`{name}.yaml` templates.
    """

    def __init__(self, directory: Path | None = None) -> None:
        self._directory = directory

    def names(self) -> list[str]:
        """Return the names of all available templates, sorted."""
        names = {
            r.name.removesuffix(".yaml")
            for r in files("pvinspect").joinpath("data").iterdir()
            if r.name.endswith(".yaml")
        }
        if self._directory and self._directory.is_dir():
            names.update(p.stem for p in self._directory.glob("*.yaml"))
        return sorted(names)

    def load(self, name: str) -> PodTemplate:
        """Load a template by name or path.

        Parameters
        ----------
        name
            Name of the template, or path to a YAML template file.

        Returns
        -------
        PodTemplate
            Parsed template.

        Raises
        ------
        InvalidTemplateError
            Raised if the template is not valid YAML or is missing required
            fields.
        TemplateNotFoundError
            Raised if no template by that name exists.
        """
        text = self._read(name)
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise InvalidTemplateError(f"Template {name}: {e}") from e
        if not isinstance(data, dict):
            raise InvalidTemplateError(f"Template {name} is not a mapping")
        data.setdefault("name", Path(name).stem)
        try:
            return PodTemplate.model_validate(data)
        except PydanticValidationError as e:
            raise InvalidTemplateError(f"Template {name}: {e}") from e

    def _read(self, name: str) -> str:
        if name.endswith((".yaml", ".yml")) or "/" in name:
            path = Path(name)
            if not path.is_file():
                raise TemplateNotFoundError(f"Template file {name} not found")
            return path.read_text()
        if self._directory:
            path = self._directory / f"{name}.yaml"
            if path.is_file():
                return path.read_text()
        resource = files("pvinspect").joinpath("data", f"{name}.yaml")
        if not resource.is_file():
            available = ", ".join(self.names())
            msg = f"Unknown template {name} (available: {available})"
            raise TemplateNotFoundError(msg)
        return resource.read_text()
