from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union

from ..core.errors import EmptyContent, InvalidRequest, SourceNotFound, StorageError
from ..core.models import SourceArtifact
from ..core.utils import IdGenerator, check_language, infer_language

INPUT = "input"
SCRIPTS = "scripts"
COMPILED = "compiled"
OUTPUT = "output"

Content = Union[str, bytes]


@dataclass(frozen=True)
class StoredFile:
    filename: str
    path: Path          # directory holding the file
    extension: str

    @property
    def full_path(self) -> Path:
        return self.path / self.filename


class SourceStore(Protocol):
    def exists(self, root: str, name: str) -> bool: ...
    def locate(self, root: str, name: str) -> Path: ...
    def ensure_root(self, root: str, *sub: str) -> Path: ...
    def read_bytes(self, root: str, name: str) -> bytes: ...
    def write_bytes(self, root: str, name: str, content: bytes) -> Path: ...
    def discard(self, root: str, name: str) -> None: ...


def _as_bytes(content: Content) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else bytes(content)


class LocalFSStorage:
    """
    Filesystem-backed store laid out as:
      <storage_path>/
        ├─ input/                       (fixtures fed to programs)
        ├─ scripts/<scope>/<sub-scope>/ (submitted sources)
        ├─ compiled/<scope>/<sub-scope>/
        └─ output/                      (captured program output)
    Roots are created on first write.
    """

    def __init__(self, storage_path: Path, ids: Optional[IdGenerator] = None):
        self.root = storage_path if storage_path.is_absolute() else storage_path.resolve()
        self.ids = ids or IdGenerator()

    # ------------ primitives ------------

    def locate(self, root: str, name: str) -> Path:
        base = self.root / root
        p = Path(os.path.normpath(base / name))
        if p != base and base not in p.parents:
            raise InvalidRequest("path escapes the store", detail={"root": root, "name": name})
        return p

    def exists(self, root: str, name: str) -> bool:
        return self.locate(root, name).is_file()

    def ensure_root(self, root: str, *sub: str) -> Path:
        p = self.locate(root, "/".join(sub)) if sub else self.root / root
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("Can't create path to save file", reason=str(e)) from e
        return p

    def read_bytes(self, root: str, name: str) -> bytes:
        return self.locate(root, name).read_bytes()

    def write_bytes(self, root: str, name: str, content: bytes) -> Path:
        p = self.locate(root, name)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(content)
        except OSError as e:
            raise StorageError("Can't write file", reason=str(e)) from e
        return p

    def discard(self, root: str, name: str) -> None:
        try:
            self.locate(root, name).unlink()
        except FileNotFoundError:
            pass

    # ------------ fixtures and submissions ------------

    def save_input(self, content: Content, filename: Optional[str] = None) -> StoredFile:
        if not content:
            raise EmptyContent("Content can't be empty.")
        name = f"{filename or 'input_' + self.ids.token()}.txt"
        p = self.write_bytes(INPUT, name, _as_bytes(content))
        return StoredFile(filename=name, path=p.parent, extension="txt")

    def save_script(
        self, ext: str, content: Content, scope: Sequence[str], filename: Optional[str] = None
    ) -> StoredFile:
        lang = check_language(ext)
        if not content:
            raise EmptyContent("Content can't be empty.")
        name = f"{filename or 'script_' + self.ids.token()}.{lang.value}"
        p = self.write_bytes(SCRIPTS, "/".join((*scope, name)), _as_bytes(content))
        return StoredFile(filename=name, path=p.parent, extension=lang.value)

    def save_output(self, content: Optional[Content], filename: Optional[str] = None) -> StoredFile:
        # an empty output is a legitimate fixture
        if content is None:
            raise EmptyContent("Content can't be empty.")
        name = f"{filename or 'output_' + self.ids.token()}.txt"
        p = self.write_bytes(OUTPUT, name, _as_bytes(content))
        return StoredFile(filename=name, path=p.parent, extension="txt")

    def load_source(self, scope: Sequence[str], filename: str) -> SourceArtifact:
        ref = "/".join((*scope, filename))
        if not self.exists(SCRIPTS, ref):
            raise SourceNotFound("source file does not exist", detail={"source": ref})
        return SourceArtifact(
            scope=tuple(scope),
            filename=filename,
            language=infer_language(filename),
            content=self.read_bytes(SCRIPTS, ref),
        )
