import dataclasses
import io
import os
import stat
from enum import Enum
from typing import (
    Any,
    BinaryIO,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from debassemble.exceptions import OverlayResolutionError
from debassemble.path_matcher import path_matcher
from debassemble.util import assume_not_none

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644


class Precedence(Enum):
    """How a binding competes with other bindings defining the same path

    A `REPLACE` binding always wins.  Otherwise the most recently added `AFTER`
    binding wins, and `BEFORE` bindings only answer for paths that no `AFTER`
    binding (nor a later `BEFORE` binding) defines.
    """

    BEFORE = ("before", 0)
    AFTER = ("after", 1)
    REPLACE = ("replace", 2)

    @property
    def rank(self) -> int:
        return self.value[1]


def normalize_overlay_path(path: str) -> str:
    parts = [p for p in path.split("/") if p not in ("", ".")]
    if ".." in parts:
        raise ValueError(
            f'Please provide paths that are normalized (i.e., no ".."). Offending input "{path}"'
        )
    return "/" + "/".join(parts)


class SourceFileReader:
    """Reads the content of a provided file

    Failures while reading and content that no longer has the size seen when
    the path was resolved are reported as `OverlayResolutionError` naming the
    source of the file.
    """

    __slots__ = ("_fd", "_description", "_remaining")

    def __init__(self, fd: BinaryIO, description: str, expected_size: int) -> None:
        self._fd = fd
        self._description = description
        self._remaining = expected_size

    def __enter__(self) -> "SourceFileReader":
        return self

    def __exit__(self, *_: Any) -> None:
        self.close()

    def close(self) -> None:
        self._fd.close()

    def read(self, size: int = -1) -> bytes:
        try:
            data = self._fd.read(size)
        except OSError as e:
            raise OverlayResolutionError(
                f"Unable to read {self._description}: {str(e)}"
            ) from e
        wanted = self._remaining if size < 0 else min(size, self._remaining)
        # Regular files only return short reads at the end of the file
        if len(data) < wanted or len(data) > self._remaining:
            raise OverlayResolutionError(
                f"The size of {self._description} changed during the build"
            )
        self._remaining -= len(data)
        return data


@dataclasses.dataclass(slots=True, frozen=True)
class ProvidedFile:
    path: str
    size: int
    mode: int
    uid: int = 0
    gid: int = 0
    fs_path: Optional[str] = None
    content: Optional[bytes] = None

    def open(self) -> SourceFileReader:
        if self.content is not None:
            return SourceFileReader(
                io.BytesIO(self.content), f'"{self.path}"', self.size
            )
        assert self.fs_path is not None
        description = f'"{self.path}" (from "{self.fs_path}")'
        try:
            fd = open(self.fs_path, "rb")
        except OSError as e:
            raise OverlayResolutionError(
                f"Unable to read {description}: {str(e)}"
            ) from e
        return SourceFileReader(fd, description, self.size)

    def relocated(self, path: str) -> "ProvidedFile":
        if path == self.path:
            return self
        return dataclasses.replace(self, path=path)


def _stat_file(path: str, fs_path: str) -> ProvidedFile:
    try:
        st = os.stat(fs_path)
    except OSError as e:
        raise OverlayResolutionError(
            f'Unable to resolve "{path}" (from "{fs_path}"): {str(e)}'
        ) from e
    if not stat.S_ISREG(st.st_mode):
        raise OverlayResolutionError(
            f'The path "{fs_path}" (provided as "{path}") is not a regular file'
        )
    return ProvidedFile(
        path=path,
        size=st.st_size,
        mode=stat.S_IMODE(st.st_mode),
        uid=st.st_uid,
        gid=st.st_gid,
        fs_path=fs_path,
    )


class OverlayProvider:
    """A source of files for an overlay

    Providers only define files; directories are derived from the file paths.
    All paths are rooted and "/"-separated.
    """

    def iter_files(self) -> Iterable[str]:
        raise NotImplementedError

    def lookup(self, path: str) -> Optional[ProvidedFile]:
        raise NotImplementedError


class DirectoryProvider(OverlayProvider):
    __slots__ = ("_fs_root",)

    def __init__(self, fs_root: str) -> None:
        self._fs_root = fs_root

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._fs_root!r})"

    def iter_files(self) -> Iterable[str]:
        fs_root = self._fs_root
        if not os.path.isdir(fs_root):
            raise OverlayResolutionError(
                f'The directory "{fs_root}" does not exist or is not a directory'
            )

        def _raise(e: OSError) -> None:
            raise OverlayResolutionError(
                f'Unable to scan "{fs_root}": {str(e)}'
            ) from e

        for dirpath, dirnames, filenames in os.walk(fs_root, onerror=_raise):
            dirnames.sort()
            rel_dir = os.path.relpath(dirpath, fs_root)
            for name in sorted(filenames):
                rel_path = name if rel_dir == "." else os.path.join(rel_dir, name)
                yield "/" + rel_path.replace(os.sep, "/")

    def lookup(self, path: str) -> Optional[ProvidedFile]:
        fs_path = os.path.join(self._fs_root, path.lstrip("/"))
        try:
            st = os.stat(fs_path)
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            raise OverlayResolutionError(
                f'Unable to resolve "{path}" (from "{fs_path}"): {str(e)}'
            ) from e
        if stat.S_ISDIR(st.st_mode):
            return None
        return _stat_file(path, fs_path)


class FileMapProvider(OverlayProvider):
    """Binds individual files from disk to logical paths"""

    __slots__ = ("_file_map",)

    def __init__(self, file_map: Mapping[str, str]) -> None:
        self._file_map = {normalize_overlay_path(k): v for k, v in file_map.items()}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._file_map!r})"

    def iter_files(self) -> Iterable[str]:
        for path in sorted(self._file_map):
            # Fail during the walk if a mapped file is missing
            _stat_file(path, self._file_map[path])
            yield path

    def lookup(self, path: str) -> Optional[ProvidedFile]:
        fs_path = self._file_map.get(path)
        if fs_path is None:
            return None
        return _stat_file(path, fs_path)


class ContentProvider(OverlayProvider):
    """Serves generated in-memory content"""

    __slots__ = ("_content", "_modes")

    def __init__(
        self,
        content: Mapping[str, Union[str, bytes]],
        modes: Optional[Mapping[str, int]] = None,
    ) -> None:
        self._content = {
            normalize_overlay_path(k): v.encode("utf-8") if isinstance(v, str) else v
            for k, v in content.items()
        }
        self._modes = (
            {normalize_overlay_path(k): v for k, v in modes.items()} if modes else {}
        )

    def iter_files(self) -> Iterable[str]:
        return sorted(self._content)

    def lookup(self, path: str) -> Optional[ProvidedFile]:
        content = self._content.get(path)
        if content is None:
            return None
        return ProvidedFile(
            path=path,
            size=len(content),
            mode=self._modes.get(path, DEFAULT_FILE_MODE),
            content=content,
        )


class ExcludeProvider(OverlayProvider):
    """Hides paths matching any of the globs from the wrapped provider"""

    __slots__ = ("_provider", "_patterns", "_is_excluded")

    def __init__(self, provider: OverlayProvider, *patterns: str) -> None:
        self._provider = provider
        self._patterns = patterns
        self._is_excluded = path_matcher(patterns)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._provider!r}, {self._patterns!r})"

    def iter_files(self) -> Iterable[str]:
        return (p for p in self._provider.iter_files() if not self._is_excluded(p))

    def lookup(self, path: str) -> Optional[ProvidedFile]:
        if self._is_excluded(path):
            return None
        return self._provider.lookup(path)


@dataclasses.dataclass(slots=True, frozen=True)
class Binding:
    mount_point: str
    provider: OverlayProvider
    precedence: Precedence
    order: int

    @property
    def precedence_key(self) -> Tuple[int, int]:
        return self.precedence.rank, self.order

    def provider_path(self, path: str) -> Optional[str]:
        mount_point = self.mount_point
        if mount_point == "/":
            return path
        if path.startswith(mount_point + "/"):
            return path[len(mount_point) :]
        return None

    def logical_path(self, provider_path: str) -> str:
        if self.mount_point == "/":
            return provider_path
        return self.mount_point + provider_path


def resolve_binding(candidates: Iterable[Binding]) -> Optional[Binding]:
    """Pick the binding answering for a path out of those defining it"""
    return max(candidates, key=lambda b: b.precedence_key, default=None)


@dataclasses.dataclass(slots=True, frozen=True)
class ResolvedEntry:
    path: str
    is_dir: bool
    size: int
    mode: int
    uid: int = 0
    gid: int = 0
    provided_file: Optional[ProvidedFile] = None

    def open(self) -> SourceFileReader:
        if self.provided_file is None:
            raise OverlayResolutionError(f'Cannot open "{self.path}": Is a directory')
        return self.provided_file.open()

    @classmethod
    def directory(cls, path: str) -> "ResolvedEntry":
        return cls(path=path, is_dir=True, size=0, mode=DEFAULT_DIR_MODE)

    @classmethod
    def file(cls, provided_file: ProvidedFile) -> "ResolvedEntry":
        return cls(
            path=provided_file.path,
            is_dir=False,
            size=provided_file.size,
            mode=provided_file.mode,
            uid=provided_file.uid,
            gid=provided_file.gid,
            provided_file=provided_file,
        )


class Overlay(OverlayProvider):
    """A logical file tree composed from layered providers

    Bindings are only recorded when bound.  The providers are consulted when
    the overlay is walked or a path is opened, so errors from the underlying
    sources surface at that point.  An overlay can itself be bound into
    another overlay.
    """

    __slots__ = ("_bindings",)

    def __init__(self) -> None:
        self._bindings: List[Binding] = []

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} with {len(self._bindings)} binding(s)>"

    def bind(
        self,
        mount_point: str,
        provider: OverlayProvider,
        precedence: Precedence = Precedence.AFTER,
    ) -> None:
        if provider is self:
            raise ValueError("An overlay cannot be bound into itself")
        self._bindings.append(
            Binding(
                normalize_overlay_path(mount_point),
                provider,
                precedence,
                len(self._bindings),
            )
        )

    def _winners(self) -> Dict[str, Binding]:
        winners: Dict[str, Binding] = {}
        for binding in self._bindings:
            for provider_path in binding.provider.iter_files():
                path = binding.logical_path(provider_path)
                current = winners.get(path)
                if current is None or binding.precedence_key > current.precedence_key:
                    winners[path] = binding
        return winners

    def iter_files(self) -> Iterable[str]:
        return sorted(self._winners())

    def lookup(self, path: str) -> Optional[ProvidedFile]:
        path = normalize_overlay_path(path)
        found: Dict[int, ProvidedFile] = {}
        candidates = []
        for binding in self._bindings:
            provider_path = binding.provider_path(path)
            if provider_path is None:
                continue
            provided_file = binding.provider.lookup(provider_path)
            if provided_file is not None:
                found[binding.order] = provided_file
                candidates.append(binding)
        winner = resolve_binding(candidates)
        if winner is None:
            return None
        return found[winner.order].relocated(path)

    def open(self, path: str) -> SourceFileReader:
        provided_file = self.lookup(path)
        if provided_file is None:
            raise OverlayResolutionError(f'No such file "{path}" in the overlay')
        return provided_file.open()

    def walk(self) -> Iterator[ResolvedEntry]:
        """Depth-first walk of the resolved tree, sorted by name at each level

        The root directory comes first.  Directories are synthesized from the
        paths of the files they contain.
        """
        winners = self._winners()
        dir_children: Dict[str, Set[str]] = {"/": set()}
        for path in winners:
            child = path
            parent = os.path.dirname(path)
            while True:
                siblings = dir_children.get(parent)
                if siblings is None:
                    siblings = set()
                    dir_children[parent] = siblings
                    siblings.add(child)
                    child = parent
                    parent = os.path.dirname(parent)
                    continue
                siblings.add(child)
                break
        conflicts = sorted(p for p in winners if p in dir_children)
        if conflicts:
            raise OverlayResolutionError(
                f'The path "{conflicts[0]}" is provided both as a file and as a directory'
            )
        yield from self._walk_dir("/", dir_children, winners)

    def _walk_dir(
        self,
        dir_path: str,
        dir_children: Mapping[str, Set[str]],
        winners: Mapping[str, Binding],
    ) -> Iterator[ResolvedEntry]:
        yield ResolvedEntry.directory(dir_path)
        for child in sorted(dir_children[dir_path], key=os.path.basename):
            if child in dir_children:
                yield from self._walk_dir(child, dir_children, winners)
                continue
            binding = winners[child]
            provided_file = binding.provider.lookup(
                assume_not_none(binding.provider_path(child))
            )
            if provided_file is None:
                raise OverlayResolutionError(
                    f'The path "{child}" disappeared from {binding.provider!r} during the walk'
                )
            yield ResolvedEntry.file(provided_file.relocated(child))
