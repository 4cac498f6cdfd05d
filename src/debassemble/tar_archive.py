import dataclasses
import gzip
import tarfile
from enum import Enum
from typing import BinaryIO, Iterable, Iterator, Mapping, Optional

from debassemble.overlay import Overlay, ResolvedEntry

MAINTAINER_SCRIPTS = ("preinst", "postinst", "prerm", "postrm")
GENERATED_CONTROL_FILES = ("control", "md5sums", "conffiles")

CONTROL_MEMBER_MODES: Mapping[str, int] = {
    **{name: 0o775 for name in MAINTAINER_SCRIPTS},
    **{name: 0o644 for name in GENERATED_CONTROL_FILES},
}


class PathType(Enum):
    FILE = ("file", tarfile.REGTYPE)
    DIRECTORY = ("directory", tarfile.DIRTYPE)

    @property
    def tarinfo_type(self) -> bytes:
        return self.value[1]


@dataclasses.dataclass(slots=True)
class ArchiveMember:
    member_path: str
    path_type: PathType
    entry: ResolvedEntry
    size: int
    mode: int
    owner: str
    uid: int
    group: str
    gid: int
    mtime: int

    def create_tar_info(self) -> tarfile.TarInfo:
        tar_info = tarfile.TarInfo(self.member_path)
        tar_info.type = self.path_type.tarinfo_type
        tar_info.size = self.size
        tar_info.mode = self.mode
        tar_info.uname = self.owner
        tar_info.uid = self.uid
        tar_info.gname = self.group
        tar_info.gid = self.gid
        tar_info.mtime = self.mtime
        return tar_info

    @classmethod
    def from_entry(
        cls,
        entry: ResolvedEntry,
        mtime: int,
        *,
        mode_overrides: Optional[Mapping[str, int]] = None,
        zero_ownership: bool = True,
    ) -> Optional["ArchiveMember"]:
        """Normalize an overlay entry into an archive member

        :return: The member or None for the root directory, which is never
          part of the archive.
        """
        member_path = entry.path.lstrip("/")
        if not member_path:
            return None
        mode = entry.mode
        if mode_overrides is not None:
            mode = mode_overrides.get(member_path, mode)
        return cls(
            member_path=member_path,
            path_type=PathType.DIRECTORY if entry.is_dir else PathType.FILE,
            entry=entry,
            size=0 if entry.is_dir else entry.size,
            mode=mode,
            # The symbolic owner is always root; the numeric ids are only
            # reset when asked to.
            owner="root",
            uid=0 if zero_ownership else entry.uid,
            group="root",
            gid=0 if zero_ownership else entry.gid,
            mtime=mtime,
        )


def archive_members(
    fs: Overlay,
    mtime: int,
    *,
    mode_overrides: Optional[Mapping[str, int]] = None,
    zero_ownership: bool = True,
) -> Iterator[ArchiveMember]:
    for entry in fs.walk():
        member = ArchiveMember.from_entry(
            entry,
            mtime,
            mode_overrides=mode_overrides,
            zero_ownership=zero_ownership,
        )
        if member is not None:
            yield member


def _write_tar_members(
    tar_members: Iterable[ArchiveMember],
    tar_fd: tarfile.TarFile,
) -> None:
    for tar_member in tar_members:
        tar_info = tar_member.create_tar_info()
        if tar_member.path_type == PathType.FILE:
            with tar_member.entry.open() as mfd:
                tar_fd.addfile(tar_info, fileobj=mfd)
        else:
            tar_fd.addfile(tar_info)


def generate_tar_gz(
    fs: Overlay,
    write_to: BinaryIO,
    mtime: int,
    *,
    mode_overrides: Optional[Mapping[str, int]] = None,
    zero_ownership: bool = True,
    compression_level: int = 9,
) -> None:
    """Write the overlay as a gzip compressed tar stream

    Every member gets the same mtime, which is also used for the gzip header.
    """
    with (
        gzip.GzipFile(
            filename="",
            mode="wb",
            fileobj=write_to,
            compresslevel=compression_level,
            mtime=mtime,
        ) as gz_fd,
        tarfile.open(
            mode="w|",
            fileobj=gz_fd,
            format=tarfile.GNU_FORMAT,
            errorlevel=1,
        ) as tar_fd,
    ):
        _write_tar_members(
            archive_members(
                fs,
                mtime,
                mode_overrides=mode_overrides,
                zero_ownership=zero_ownership,
            ),
            tar_fd,
        )
