"""Controller tree and path resolution.

Controllers are arranged like files in directories: ``blog/posts`` is
the ``posts`` controller inside the ``blog`` directory. Resolving a URL
path walks that structure:

1. Descend through directories for as long as the next segment names
   one. The last directory entered is the default controller name
   (``home`` at the root).
2. If the next segment names a controller in that directory, it becomes
   the controller name.
3. No controller of that name in the directory: ``NotFound``.
4. If the next segment names an action of the controller
   (case-insensitive), it is the action; otherwise the action is the
   controller name.
5. What is left over is the ``extra`` input source.

Deeper directories win: ``/blog`` enters the ``blog`` directory even if
the root also has a ``blog`` controller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from treb.errors import ConfigurationError, NotFound

if TYPE_CHECKING:
    from treb.controller import Controller

HOME = "home"


@dataclass(slots=True)
class Node:
    """One directory: subdirectories and controllers by name."""

    dirs: dict[str, Node] = field(default_factory=dict)
    controllers: dict[str, type[Controller]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Resolution:
    controller: type[Controller]
    name: str
    action: str
    path: str
    extra: tuple[str, ...]


def split_path(path: str) -> list[str]:
    """URL path to segments, minus the empty ones around leading and trailing slashes."""
    segments = path.split("/")
    if segments and segments[-1] == "":
        segments.pop()
    if segments and segments[0] == "":
        segments.pop(0)
    return segments


class ControllerTree:
    __slots__ = ("root",)

    def __init__(self) -> None:
        self.root = Node()

    def add(self, location: str, controller: type[Controller]) -> None:
        """Register *controller* at ``dir/.../name``."""
        parts = [p for p in location.strip("/").split("/") if p]
        if not parts:
            msg = "Controller location must not be empty"
            raise ConfigurationError(msg)
        *dirs, name = parts
        node = self.root
        for part in dirs:
            node = node.dirs.setdefault(part, Node())
        existing = node.controllers.get(name)
        if existing is not None and existing is not controller:
            msg = f"Controller {location!r} registered twice ({existing.__qualname__}, {controller.__qualname__})"
            raise ConfigurationError(msg)
        node.controllers[name] = controller

    def locations(self) -> list[str]:
        """Every registered ``dir/name``, sorted."""
        found: list[str] = []

        def walk(node: Node, prefix: str) -> None:
            found.extend(f"{prefix}{name}" for name in node.controllers)
            for part, child in node.dirs.items():
                walk(child, f"{prefix}{part}/")

        walk(self.root, "")
        return sorted(found)

    def resolve(self, path: str) -> Resolution:
        segments = split_path(path)
        node = self.root
        name = HOME
        directory = ""

        while segments and segments[0] in node.dirs:
            name = segments.pop(0)
            node = node.dirs[name]
            directory += f"/{name}"

        if segments and segments[0] in node.controllers:
            name = segments.pop(0)

        controller = node.controllers.get(name)
        if controller is None:
            raise NotFound

        action = name
        if segments and segments[0].lower() in controller.actions:
            action = segments.pop(0)

        return Resolution(
            controller=controller,
            name=name,
            action=action.lower(),
            path=directory,
            extra=tuple(segments),
        )
