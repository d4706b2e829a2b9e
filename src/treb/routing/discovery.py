"""Filesystem controller discovery.

Walks a controllers directory: every ``.py`` file is a controller named
after the file, every subdirectory a directory of the controller tree::

    controllers/
        home.py            -> home        (URL /)
        about.py           -> about       (URL /about)
        blog/
            blog.py        -> blog/blog   (URL /blog)
            posts.py       -> blog/posts  (URL /blog/posts)

Files and directories starting with ``_`` or ``.`` are skipped (shared
helpers live there). A file must define one ``Controller`` subclass; if
it defines several, the one named after the file (``Posts`` or
``PostsController``, any case) is used.
"""

from __future__ import annotations

import importlib.util
import inspect
from pathlib import Path

from treb.controller import Controller
from treb.errors import ConfigurationError


def discover_controllers(directory: str | Path) -> list[tuple[str, type[Controller]]]:
    """``(location, controller class)`` for every controller file under *directory*."""
    root = Path(directory).resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Controllers directory not found: {root}")
    found: list[tuple[str, type[Controller]]] = []
    _walk(root, [], found)
    return found


def _walk(directory: Path, parts: list[str], found: list[tuple[str, type[Controller]]]) -> None:
    entries = sorted(p for p in directory.iterdir() if not p.name.startswith(("_", ".")))
    for item in entries:
        if item.is_file() and item.suffix == ".py":
            location = "/".join([*parts, item.stem])
            found.append((location, _load_controller(item, location)))
    for item in entries:
        if item.is_dir():
            _walk(item, [*parts, item.name], found)


def _load_controller(file: Path, location: str) -> type[Controller]:
    module_name = "treb_controllers." + location.replace("/", ".")
    spec = importlib.util.spec_from_file_location(module_name, file)
    if spec is None or spec.loader is None:
        msg = f"Cannot load controller module {file}"
        raise ConfigurationError(msg)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    candidates = [
        obj
        for obj in vars(module).values()
        if inspect.isclass(obj)
        and issubclass(obj, Controller)
        and obj is not Controller
        and obj.__module__ == module.__name__
    ]
    if len(candidates) == 1:
        return candidates[0]

    wanted = {file.stem.lower(), f"{file.stem.lower()}controller"}
    named = [c for c in candidates if c.__name__.lower() in wanted]
    if len(named) == 1:
        return named[0]
    if not candidates:
        msg = f"{file} defines no Controller subclass"
    else:
        names = ", ".join(c.__name__ for c in candidates)
        msg = f"{file} defines several controllers ({names}); name one after the file"
    raise ConfigurationError(msg)
