import os
import stat
from typing import BinaryIO, Iterable, Iterator, Optional, Tuple

from debassemble.exceptions import (
    ArchiveInvariantError,
    PackageAssemblyIOError,
)
from debassemble.util import assume_not_none, describe_os_error


# AR header / start of a deb file for reference
# 00000000  21 3c 61 72 63 68 3e 0a  64 65 62 69 61 6e 2d 62  |!<arch>.debian-b|
# 00000010  69 6e 61 72 79 20 20 20  31 36 36 38 39 37 33 36  |inary   16689736|
# 00000020  39 35 20 20 30 20 20 20  20 20 30 20 20 20 20 20  |95  0     0     |
# 00000030  31 30 30 36 30 30 20 20  34 20 20 20 20 20 20 20  |100600  4       |
# 00000040  20 20 60 0a 32 2e 30 0a  63 6f 6e 74 72 6f 6c 2e  |  `.2.0.control.|

AR_MAGIC = b"!<arch>\n"
AR_HEADER_LEN = 60
AR_MEMBER_MODE = 0o600
_COPY_CHUNK_SIZE = 64 * 1024


class ArMember:
    def __init__(
        self,
        name: str,
        fixed_binary: Optional[bytes] = None,
        fs_path: Optional[str] = None,
        declared_size: Optional[int] = None,
    ) -> None:
        if (fixed_binary is None) == (fs_path is None):
            raise ValueError("Exactly one of fixed_binary and fs_path must be given")
        if len(name.encode("ascii")) > 16:
            raise ValueError(f'The ar member name "{name}" is longer than 16 bytes')
        self.name = name
        self.fixed_binary = fixed_binary
        self.fs_path = fs_path
        self._declared_size = declared_size

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"

    @classmethod
    def from_file(cls, name: str, fs_path: str) -> "ArMember":
        try:
            size = os.stat(fs_path).st_size
        except OSError as e:
            raise PackageAssemblyIOError(
                describe_os_error("stat", fs_path, e)
            ) from e
        return cls(name, fs_path=fs_path, declared_size=size)

    @property
    def declared_size(self) -> int:
        if self.fixed_binary is not None:
            return len(self.fixed_binary)
        return assume_not_none(self._declared_size)

    def write_content(self, fd: BinaryIO) -> None:
        """Copy the member content, checking it matches the declared size"""
        if self.fixed_binary is not None:
            fd.write(self.fixed_binary)
            return
        declared_size = self.declared_size
        written = 0
        with open(assume_not_none(self.fs_path), "rb") as member_fd:
            while chunk := member_fd.read(_COPY_CHUNK_SIZE):
                fd.write(chunk)
                written += len(chunk)
        if written != declared_size:
            raise ArchiveInvariantError(
                f"Internal error: Copied {written} bytes for the ar member {self.name}"
                f" but its header declared {declared_size} bytes"
            )


def write_header(
    fd: BinaryIO,
    member: ArMember,
    member_len: int,
    mtime: int,
) -> None:
    header = b"%-16s%-12d%-6d%-6d%-8o%-10d\x60\n" % (
        member.name.encode("ascii"),
        mtime,
        0,
        0,
        stat.S_IFREG | AR_MEMBER_MODE,
        member_len,
    )
    if len(header) != AR_HEADER_LEN:
        raise ArchiveInvariantError(
            f"Internal error: The ar header for {member.name} is {len(header)} bytes"
            f" instead of {AR_HEADER_LEN} (member size {member_len}, mtime {mtime})"
        )
    fd.write(header)


def generate_ar_archive(
    output_filename: str,
    mtime: int,
    members: Iterable[ArMember],
) -> None:
    try:
        with open(output_filename, "wb") as fd:
            fd.write(AR_MAGIC)
            for member in members:
                member_len = member.declared_size
                write_header(fd, member, member_len, mtime)
                member.write_content(fd)
                if member_len % 2:
                    # Members are 2-byte aligned
                    fd.write(b"\n")
    except OSError as e:
        raise PackageAssemblyIOError(
            describe_os_error("write", output_filename, e)
        ) from e


def iter_ar_members(fd: BinaryIO) -> Iterator[Tuple[str, int, bytes]]:
    """Read back the members of an ar archive as (name, mtime, content)"""
    magic = fd.read(len(AR_MAGIC))
    if magic != AR_MAGIC:
        raise ValueError("Not an ar archive (bad magic)")
    while header := fd.read(AR_HEADER_LEN):
        if len(header) != AR_HEADER_LEN or header[58:60] != b"\x60\n":
            raise ValueError("Truncated or corrupt ar member header")
        name = header[0:16].decode("ascii").rstrip(" ").rstrip("/")
        mtime = int(header[16:28])
        size = int(header[48:58])
        content = fd.read(size)
        if len(content) != size:
            raise ValueError(f"Truncated content for ar member {name}")
        if size % 2:
            fd.read(1)
        yield name, mtime, content
