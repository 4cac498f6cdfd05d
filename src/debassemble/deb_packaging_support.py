import dataclasses
import hashlib
from typing import Optional, Sequence

from debassemble.overlay import Overlay
from debassemble.path_matcher import path_matcher

DEFAULT_CONFFILE_PATTERNS = ("/etc/*/**",)
CONFFILES_DISABLED = "-"


@dataclasses.dataclass(slots=True, frozen=True)
class DataTreeSummary:
    """The control files derived from the data tree of a package"""

    md5sums: str
    # None when conffile generation has been disabled
    conffiles: Optional[str]
    installed_size_bytes: int

    @property
    def installed_size(self) -> int:
        """The installed size in KiB as used by the Installed-Size field"""
        return compute_installed_size(self.installed_size_bytes)


def compute_installed_size(total_bytes: int) -> int:
    # Round up; any remainder counts as a full KiB
    return (total_bytes + 1023) // 1024


def effective_conffile_patterns(
    patterns: Optional[Sequence[str]],
) -> Optional[Sequence[str]]:
    """Resolve the configured conffile globs

    :return: The globs to use or None if conffile generation is disabled
    """
    if not patterns:
        return DEFAULT_CONFFILE_PATTERNS
    if list(patterns) == [CONFFILES_DISABLED]:
        return None
    return patterns


def summarize_data_tree(
    data_fs: Overlay,
    conffile_patterns: Optional[Sequence[str]] = None,
) -> DataTreeSummary:
    """Compute md5sums, conffiles and the installed size from one walk

    All three values are derived from the same walk of the data tree, so they
    always describe the same set of files as the data.tar built from it.
    """
    patterns = effective_conffile_patterns(conffile_patterns)
    is_conffile = path_matcher(patterns) if patterns is not None else None
    md5sums = []
    conffiles = []
    total_size = 0
    for entry in data_fs.walk():
        if entry.is_dir:
            continue
        file_hash = hashlib.md5()
        with entry.open() as f:
            while chunk := f.read(8192):
                file_hash.update(chunk)
        md5sums.append(f"{file_hash.hexdigest()}  {entry.path}\n")
        if is_conffile is not None and is_conffile(entry.path):
            conffiles.append(f"{entry.path}\n")
        total_size += entry.size

    return DataTreeSummary(
        md5sums="".join(md5sums),
        # The conffiles content is always terminated by a blank line
        conffiles="".join(conffiles) + "\n" if is_conffile is not None else None,
        installed_size_bytes=total_size,
    )
