import dataclasses
import os
import stat
from typing import List, Mapping, Optional, Sequence

from debassemble.deb_packaging_support import effective_conffile_patterns
from debassemble.exceptions import OverlayResolutionError
from debassemble.overlay import (
    DirectoryProvider,
    ExcludeProvider,
    FileMapProvider,
    Overlay,
    Precedence,
)
from debassemble.tar_archive import MAINTAINER_SCRIPTS


@dataclasses.dataclass(slots=True)
class Files:
    """The file trees of a package

    :ivar data: The files installed by the package (data.tar)
    :ivar control: Maintainer scripts and other files for control.tar
    :ivar conffiles: Globs selecting the conffiles among the data files.  None
      means the default ("/etc/*/**") and a single "-" disables conffiles.
    """

    data: Overlay = dataclasses.field(default_factory=Overlay)
    control: Overlay = dataclasses.field(default_factory=Overlay)
    conffiles: Optional[List[str]] = None

    @property
    def conffile_patterns(self) -> Optional[Sequence[str]]:
        return effective_conffile_patterns(self.conffiles)

    def add_auto_path(
        self,
        directory: str,
        precedence: Precedence = Precedence.BEFORE,
    ) -> None:
        """Bind a directory as the package contents

        Maintainer scripts at the top of the directory are moved to the
        control tree instead of being installed.
        """
        try:
            st = os.stat(directory)
        except OSError as e:
            raise OverlayResolutionError(
                f'auto path failed to add "{directory}": {str(e)}'
            ) from e
        if not stat.S_ISDIR(st.st_mode):
            raise OverlayResolutionError(
                f'auto path: "{directory}" is not a directory'
            )
        self.data.bind(
            "/",
            ExcludeProvider(
                DirectoryProvider(directory),
                *(f"/{name}" for name in MAINTAINER_SCRIPTS),
            ),
            precedence,
        )
        scripts = {
            name: os.path.join(directory, name)
            for name in MAINTAINER_SCRIPTS
            if os.path.isfile(os.path.join(directory, name))
        }
        if scripts:
            self.control.bind("/", FileMapProvider(scripts), Precedence.BEFORE)

    def add_file_map(
        self,
        file_map: Mapping[str, str],
        precedence: Precedence = Precedence.AFTER,
    ) -> None:
        """Install individual files

        :param file_map: Mapping of source path on disk to the path in the package
        """
        if file_map:
            self.data.bind(
                "/",
                FileMapProvider({dest: src for src, dest in file_map.items()}),
                precedence,
            )

    @classmethod
    def from_package_spec(
        cls,
        *,
        auto_path: Optional[str] = None,
        files: Optional[Mapping[str, str]] = None,
        conffiles: Optional[Sequence[str]] = None,
    ) -> "Files":
        fs = cls(conffiles=list(conffiles) if conffiles is not None else None)
        if auto_path:
            fs.add_auto_path(auto_path)
        if files:
            fs.add_file_map(files)
        return fs
