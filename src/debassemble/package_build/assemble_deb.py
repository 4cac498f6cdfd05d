import os
import time
from typing import Optional

from debassemble.ar_archive import ArMember, generate_ar_archive
from debassemble.control import PackageMetadata
from debassemble.deb_packaging_support import DataTreeSummary, summarize_data_tree
from debassemble.exceptions import PackageAssemblyIOError
from debassemble.files import Files
from debassemble.overlay import ContentProvider, Overlay, Precedence
from debassemble.tar_archive import CONTROL_MEMBER_MODES, generate_tar_gz
from debassemble.util import _info, build_workspace, describe_os_error, ensure_dir

DEBIAN_BINARY_VERSION = b"2.0\n"


def compose_control_fs(
    files: Files,
    control_text: str,
    summary: DataTreeSummary,
) -> Overlay:
    """The control.tar tree: provided files with the generated files on top"""
    generated = {
        "control": control_text,
        "md5sums": summary.md5sums,
    }
    if summary.conffiles is not None:
        generated["conffiles"] = summary.conffiles
    control_fs = Overlay()
    control_fs.bind("/", files.control, Precedence.BEFORE)
    control_fs.bind("/", ContentProvider(generated), Precedence.AFTER)
    return control_fs


def _create_tar_gz(
    target: str,
    fs: Overlay,
    mtime: int,
    *,
    is_control_tar: bool,
) -> None:
    try:
        with open(target, "wb") as fd:
            generate_tar_gz(
                fs,
                fd,
                mtime,
                mode_overrides=CONTROL_MEMBER_MODES if is_control_tar else None,
                zero_ownership=not is_control_tar,
            )
    except OSError as e:
        raise PackageAssemblyIOError(
            describe_os_error("write", target, e)
        ) from e


def build_deb(
    target_dir: str,
    metadata: PackageMetadata,
    files: Files,
    *,
    mtime: Optional[int] = None,
) -> str:
    """Build a .deb in the target directory

    :param target_dir: Directory for the package.  It is created if needed.
    :param metadata: The control metadata.  It must be valid.
    :param files: The data and control trees of the package
    :param mtime: Timestamp for all archive members.  Defaults to the current time.
    :return: The path to the generated package
    :raises ControlValidationError: If the metadata is not valid.  No files are
      created in this case.
    """
    metadata.validate()
    if mtime is None:
        mtime = int(time.time())
    deb_file = os.path.join(target_dir, metadata.deb_filename)

    with build_workspace() as workspace:
        summary = summarize_data_tree(files.data, files.conffile_patterns)
        control_text = metadata.render(summary.installed_size)
        control_fs = compose_control_fs(files, control_text, summary)

        control_tar = os.path.join(workspace, "control.tar.gz")
        data_tar = os.path.join(workspace, "data.tar.gz")
        _create_tar_gz(control_tar, control_fs, mtime, is_control_tar=True)
        _create_tar_gz(data_tar, files.data, mtime, is_control_tar=False)

        ensure_dir(target_dir)
        members = [
            ArMember("debian-binary", fixed_binary=DEBIAN_BINARY_VERSION),
            ArMember.from_file("control.tar.gz", control_tar),
            ArMember.from_file("data.tar.gz", data_tar),
        ]
        generate_ar_archive(deb_file, mtime, members)

    _info(f"Generated {deb_file}")
    return deb_file
