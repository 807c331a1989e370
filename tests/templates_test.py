"""Tests for pod template loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from pvinspect.exceptions import InvalidTemplateError, TemplateNotFoundError
from pvinspect.models.domain.template import PodTemplate
from pvinspect.templates import TemplateLoader


def _write_template(path: Path, **extra: object) -> None:
    template = {
        "description": "Custom template",
        "pod": {
            "metadata": {"labels": {"team": "storage"}},
            "spec": {"containers": [{"name": "main", "image": "alpine"}]},
        },
        **extra,
    }
    path.write_text(yaml.safe_dump(template))


def test_builtin() -> None:
    loader = TemplateLoader()
    assert loader.names() == ["shell", "ssh"]

    ssh = loader.load("ssh")
    assert ssh.name == "ssh"
    assert ssh.credential
    assert ssh.ssh_port == 2222
    assert ssh.ssh_user
    assert ssh.supports_mount
    assert ssh.spec["containers"]

    shell = loader.load("shell")
    assert not shell.credential
    assert not shell.supports_mount


def test_user_directory(tmp_path: Path) -> None:
    _write_template(tmp_path / "custom.yaml")
    _write_template(tmp_path / "ssh.yaml", shell="/bin/zsh")
    loader = TemplateLoader(tmp_path)
    assert loader.names() == ["custom", "shell", "ssh"]

    custom = loader.load("custom")
    assert custom.name == "custom"
    assert custom.description == "Custom template"
    assert custom.labels == {"team": "storage"}

    # User templates shadow built-in templates.
    ssh = loader.load("ssh")
    assert ssh.shell == "/bin/zsh"
    assert not ssh.credential


def test_path(tmp_path: Path) -> None:
    path = tmp_path / "mine.yaml"
    _write_template(path, sshPort=22, sshUser="root", credential=True)
    template = TemplateLoader().load(str(path))
    assert template.name == "mine"
    assert template.supports_mount

    with pytest.raises(TemplateNotFoundError):
        TemplateLoader().load(str(tmp_path / "missing.yaml"))


def test_unknown() -> None:
    with pytest.raises(TemplateNotFoundError, match="shell, ssh"):
        TemplateLoader().load("nonexistent")


def test_invalid(tmp_path: Path) -> None:
    loader = TemplateLoader(tmp_path)

    (tmp_path / "broken.yaml").write_text("pod: [unclosed\n")
    with pytest.raises(InvalidTemplateError):
        loader.load("broken")

    (tmp_path / "list.yaml").write_text("- one\n- two\n")
    with pytest.raises(InvalidTemplateError):
        loader.load("list")

    _write_template(tmp_path / "extra.yaml", unknownKey=True)
    with pytest.raises(InvalidTemplateError):
        loader.load("extra")

    _write_template(tmp_path / "nouser.yaml", sshPort=22)
    with pytest.raises(InvalidTemplateError, match="sshUser"):
        loader.load("nouser")

    (tmp_path / "empty.yaml").write_text(
        yaml.safe_dump({"pod": {"spec": {"containers": []}}})
    )
    with pytest.raises(InvalidTemplateError, match="containers"):
        loader.load("empty")


def test_template_copies() -> None:
    template = PodTemplate.model_validate(
        {
            "name": "test",
            "pod": {
                "metadata": {"labels": {"a": "b"}, "annotations": {"c": "d"}},
                "spec": {"containers": [{"name": "main"}]},
            },
        }
    )
    template.labels["x"] = "y"
    template.annotations["x"] = "y"
    assert template.labels == {"a": "b"}
    assert template.annotations == {"c": "d"}
