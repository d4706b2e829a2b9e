"""Form body parsing: URL-encoded and multipart.

URL-encoded bodies use stdlib ``urllib.parse``. Multipart bodies need
``python-multipart`` (``pip install treb[forms]``); uploaded files are
kept apart from the field values and never reach the ``post`` input
source.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl

from treb.errors import ConfigurationError
from treb.http.nesting import nest


@dataclass(frozen=True, slots=True)
class UploadFile:
    """An uploaded file from a multipart form submission.

    The content is held in memory as bytes (suitable for typical web
    uploads).
    """

    filename: str
    content_type: str
    size: int
    _content: bytes

    async def read(self) -> bytes:
        """Return the file content as bytes."""
        return self._content

    async def save(self, path: Path) -> None:
        """Write the file content to disk. Parent directories must exist."""
        path.write_bytes(self._content)

    def __repr__(self) -> str:
        return f"UploadFile({self.filename!r}, {self.content_type!r}, {self.size} bytes)"


class FormData(Mapping[str, str]):
    """Immutable parsed form fields plus uploaded files.

    ``__getitem__`` returns the first value for a name; ``nested()``
    folds bracketed names into the structure the ``post`` source uses.
    """

    __slots__ = ("_files", "_pairs")

    def __init__(
        self,
        pairs: list[tuple[str, str]],
        files: dict[str, UploadFile] | None = None,
    ) -> None:
        object.__setattr__(self, "_pairs", tuple(pairs))
        object.__setattr__(self, "_files", files or {})

    @property
    def files(self) -> Mapping[str, UploadFile]:
        """Uploaded files by field name."""
        return self._files

    def __getitem__(self, key: str) -> str:
        for name, value in self._pairs:
            if name == key:
                return value
        raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        return any(name == key for name, _ in self._pairs)

    def __iter__(self) -> Iterator[str]:
        return iter(dict.fromkeys(name for name, _ in self._pairs))

    def __len__(self) -> int:
        return len(dict.fromkeys(name for name, _ in self._pairs))

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"FormData({{{items}}})"

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key* (checkboxes, multi-selects)."""
        return [value for name, value in self._pairs if name == key]

    def nested(self) -> dict[str, Any]:
        return nest(self._pairs)


async def parse_form_data(body: bytes, content_type: str) -> FormData:
    """Parse a form body into FormData.

    Raises:
        ConfigurationError: If multipart parsing is needed but
            ``python-multipart`` is not installed.
        ValueError: If the content type is not a form encoding.
    """
    ct_lower = content_type.lower().split(";")[0].strip()

    if ct_lower == "application/x-www-form-urlencoded":
        return FormData(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))

    if ct_lower == "multipart/form-data":
        return _parse_multipart(body, content_type)

    msg = f"Unsupported form content type: {content_type!r}"
    raise ValueError(msg)


def _parse_multipart(body: bytes, content_type: str) -> FormData:
    try:
        from multipart.multipart import MultipartParser, parse_options_header
    except ImportError:
        msg = (
            "Multipart form parsing requires the 'python-multipart' package. "
            "Install it with: pip install treb[forms]"
        )
        raise ConfigurationError(msg) from None

    _, options = parse_options_header(content_type.encode("latin-1"))
    boundary = options.get(b"boundary")
    if boundary is None:
        msg = "Multipart form data missing boundary parameter"
        raise ValueError(msg)

    pairs: list[tuple[str, str]] = []
    files: dict[str, UploadFile] = {}

    headers: dict[str, str] = {}
    pending_header = ""
    data = bytearray()
    field_name: str | None = None
    filename: str | None = None

    def on_part_begin() -> None:
        nonlocal data, field_name, filename
        headers.clear()
        data = bytearray()
        field_name = None
        filename = None

    def on_part_data(chunk: bytes, start: int, end: int) -> None:
        data.extend(chunk[start:end])

    def on_part_end() -> None:
        if field_name is None:
            return
        if filename is not None:
            content = bytes(data)
            files[field_name] = UploadFile(
                filename=filename,
                content_type=headers.get("content-type", "application/octet-stream"),
                size=len(content),
                _content=content,
            )
        else:
            pairs.append((field_name, data.decode("utf-8", errors="replace")))

    def on_header_field(chunk: bytes, start: int, end: int) -> None:
        nonlocal pending_header
        pending_header = chunk[start:end].decode("latin-1").lower()

    def on_header_value(chunk: bytes, start: int, end: int) -> None:
        nonlocal field_name, filename
        value = chunk[start:end].decode("latin-1")
        headers[pending_header] = value
        if pending_header == "content-disposition":
            _, params = parse_options_header(value.encode("latin-1"))
            name = params.get(b"name")
            if name is not None:
                field_name = name.decode("utf-8")
            fname = params.get(b"filename")
            if fname is not None:
                filename = fname.decode("utf-8")

    parser = MultipartParser(
        boundary,
        {
            "on_part_begin": on_part_begin,
            "on_part_data": on_part_data,
            "on_part_end": on_part_end,
            "on_header_field": on_header_field,
            "on_header_value": on_header_value,
        },
    )
    parser.write(body)
    parser.finalize()

    return FormData(pairs, files)
