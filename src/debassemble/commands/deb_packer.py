#!/usr/bin/python3 -B
import argparse
import textwrap
from typing import Dict, List

from debian.deb822 import Deb822

from debassemble.control import PackageMetadata
from debassemble.exceptions import DebassembleRuntimeError
from debassemble.files import Files
from debassemble.package_build.assemble_deb import build_deb
from debassemble.util import (
    _error,
    resolve_source_date_epoch,
    ColorizedArgumentParser,
    setup_logging,
    program_name,
)
from debassemble.version import __version__


def _parse_file_mapping(raw: str) -> "tuple[str, str]":
    source, sep, dest = raw.partition("=")
    if not sep or not source or not dest:
        raise argparse.ArgumentTypeError(
            f'Expected SOURCE=DESTINATION, got "{raw}"'
        )
    return source, dest


def parse_args() -> argparse.Namespace:
    description = textwrap.dedent(
        """\
    Assemble a Debian binary package from a directory tree and a control file

    The PACKAGE_ROOT_DIR is installed as-is, except for the maintainer scripts
    (preinst, postinst, prerm and postrm) at its top, which are moved into the
    control archive.  The package metadata is read from the deb822 file given
    via --control.  The md5sums, conffiles and Installed-Size are generated.

    The package is written to OUTPUT_DIR as NAME-VERSION-ARCHITECTURE.deb.
    """
    )

    parser = ColorizedArgumentParser(
        description=description,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        prog=program_name(),
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "package_root_dir",
        metavar="PACKAGE_ROOT_DIR",
        help="Root directory of the package contents",
    )
    parser.add_argument(
        "output_dir",
        metavar="OUTPUT_DIR",
        help="Directory where the package should be placed",
    )
    parser.add_argument(
        "--control",
        dest="control_file",
        metavar="FILE",
        required=True,
        help="A deb822 file with the package metadata (Package, Version, Architecture, ...)",
    )
    parser.add_argument(
        "--file",
        dest="file_mappings",
        metavar="SOURCE=DESTINATION",
        action="append",
        type=_parse_file_mapping,
        default=[],
        help="Install SOURCE as DESTINATION in the package.  Can be repeated",
    )
    parser.add_argument(
        "--conffile",
        dest="conffiles",
        metavar="GLOB",
        action="append",
        default=None,
        help='Mark paths matching GLOB as conffiles (default: "/etc/*/**").'
        ' Use "-" to not generate a conffiles file.  Can be repeated',
    )
    parser.add_argument(
        "--source-date-epoch",
        dest="source_date_epoch",
        action="store",
        type=int,
        default=None,
        help="Source date epoch (can also be given via the SOURCE_DATE_EPOCH environ variable",
    )
    parser.add_argument(
        "-d",
        "--debug",
        dest="debug_mode",
        action="store_true",
        default=False,
        help="Enable debug logging and raw stack traces on errors",
    )

    return parser.parse_args()


def _read_metadata(control_file: str) -> PackageMetadata:
    try:
        with open(control_file, "rt", encoding="utf-8") as fd:
            paragraph = Deb822(fd)
    except OSError as e:
        _error(f'Could not read the control file "{control_file}": {str(e)}')
    if not paragraph:
        _error(f'The control file "{control_file}" does not contain any fields')
    return PackageMetadata.from_deb822(paragraph)


def main() -> None:
    setup_logging()
    parsed_args = parse_args()
    mtime = resolve_source_date_epoch(parsed_args.source_date_epoch)
    metadata = _read_metadata(parsed_args.control_file)
    file_map: Dict[str, str] = dict(parsed_args.file_mappings)
    conffiles: List[str] = parsed_args.conffiles
    try:
        files = Files.from_package_spec(
            auto_path=parsed_args.package_root_dir,
            files=file_map,
            conffiles=conffiles,
        )
        build_deb(parsed_args.output_dir, metadata, files, mtime=mtime)
    except DebassembleRuntimeError as e:
        if parsed_args.debug_mode:
            raise
        _error(e.message)


if __name__ == "__main__":
    main()
