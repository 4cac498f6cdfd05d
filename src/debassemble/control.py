import dataclasses
import re
from typing import IO, List, Mapping, Optional, Sequence, Tuple

from debassemble.exceptions import ControlValidationError

DEFAULT_PRIORITY = "optional"

SUPPORTED_ARCHITECTURES = (
    "all",  # Used for architecture independent packages
    "amd64",
    "arm64",
    "armel",
    "armhf",
    "i386",
    "mips",
    "mipsel",
    "powerpc",
    "ppc64el",
    "s390x",
)

# Relationship fields: control field name, attribute name, label for errors
_DEPENDS_FIELDS = (
    ("Pre-Depends", "pre_depends", "PreDependency"),
    ("Depends", "depends", "Dependency"),
)
_REPLACES_ETC_FIELDS = (
    ("Conflicts", "conflicts", "Conflict"),
    ("Breaks", "breaks", "Break"),
    ("Replaces", "replaces", "Replacement"),
)

_REQUIRED_FIELDS = (
    "package",
    "version",
    "architecture",
    "maintainer",
    "description",
)

# Field name, attribute name
_SINGLE_LINE_FIELDS = (
    ("Package", "package"),
    ("Version", "version"),
    ("Architecture", "architecture"),
    ("Maintainer", "maintainer"),
    ("Section", "section"),
    ("Priority", "priority"),
    ("Homepage", "homepage"),
)

DEPENDS_REGEX = re.compile(
    r"[a-zA-Z0-9.+_-]+(?: \((?:>|>=|<|<=|=) [0-9][0-9a-zA-Z.+~:-]*\))?",
    re.ASCII,
)
REPLACES_ETC_REGEX = re.compile(
    r"[a-zA-Z0-9.+_-]+(?: \(<< [0-9][0-9a-zA-Z.+~:-]*\))?",
    re.ASCII,
)


def _split_relationship_field(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [r.strip() for r in value.split(",") if r.strip()]


def _description_synopsis(description: str) -> str:
    return description.strip("\n").split("\n")[0].strip()


def _format_description(description: str) -> str:
    synopsis, *extended = description.strip("\n").split("\n")
    lines = [synopsis]
    for line in extended:
        if line.strip() in ("", "."):
            lines.append(" .")
        elif line.startswith(" "):
            lines.append(line)
        else:
            lines.append(" " + line)
    return "\n".join(lines)


@dataclasses.dataclass(slots=True)
class PackageMetadata:
    """The fields of a binary package's DEBIAN/control file"""

    package: str = ""
    version: str = ""
    architecture: str = ""
    maintainer: str = ""
    description: str = ""

    depends: List[str] = dataclasses.field(default_factory=list)
    pre_depends: List[str] = dataclasses.field(default_factory=list)
    conflicts: List[str] = dataclasses.field(default_factory=list)
    breaks: List[str] = dataclasses.field(default_factory=list)
    replaces: List[str] = dataclasses.field(default_factory=list)
    section: str = ""
    priority: str = ""
    homepage: str = ""

    @classmethod
    def from_deb822(cls, paragraph: Mapping[str, str]) -> "PackageMetadata":
        """Create the metadata from a deb822 paragraph (such as a `Deb822` object)

        Relationship fields are split on commas.  Unknown fields are ignored.
        """
        return cls(
            package=paragraph.get("Package", ""),
            version=paragraph.get("Version", ""),
            architecture=paragraph.get("Architecture", ""),
            maintainer=paragraph.get("Maintainer", ""),
            description=paragraph.get("Description", ""),
            depends=_split_relationship_field(paragraph.get("Depends")),
            pre_depends=_split_relationship_field(paragraph.get("Pre-Depends")),
            conflicts=_split_relationship_field(paragraph.get("Conflicts")),
            breaks=_split_relationship_field(paragraph.get("Breaks")),
            replaces=_split_relationship_field(paragraph.get("Replaces")),
            section=paragraph.get("Section", ""),
            priority=paragraph.get("Priority", ""),
            homepage=paragraph.get("Homepage", ""),
        )

    @property
    def deb_filename(self) -> str:
        return f"{self.package}-{self.version}-{self.architecture}.deb"

    def with_defaults(self) -> "PackageMetadata":
        if self.priority:
            return self
        return dataclasses.replace(self, priority=DEFAULT_PRIORITY)

    def validation_problems(self) -> List[str]:
        """All problems with the metadata, in a stable order

        An empty list means the metadata is valid.
        """
        metadata = self.with_defaults()
        problems = []
        missing = [name for name in _REQUIRED_FIELDS if not getattr(metadata, name)]
        if metadata.description and not _description_synopsis(metadata.description):
            # A description without a synopsis would render as an empty field
            missing.append("description")
        if missing:
            problems.append(
                f"These required fields are missing: {', '.join(missing)}"
            )

        for field, attr in _SINGLE_LINE_FIELDS:
            value = getattr(metadata, attr)
            if "\n" in value or "\r" in value:
                problems.append(
                    f"The {field} field must not contain a newline: {value!r}"
                )

        if (
            metadata.architecture
            and metadata.architecture not in SUPPORTED_ARCHITECTURES
        ):
            problems.append(
                f'Arch "{metadata.architecture}" is not supported; expected one of'
                f" {', '.join(SUPPORTED_ARCHITECTURES)}"
            )

        for _, attr, label in _DEPENDS_FIELDS:
            for relation in getattr(metadata, attr):
                if not DEPENDS_REGEX.fullmatch(relation):
                    problems.append(
                        f'{label} "{relation}" is invalid; expected something like "libc (= 5.1.2)"'
                        f' matching "{DEPENDS_REGEX.pattern}"'
                    )
        for _, attr, label in _REPLACES_ETC_FIELDS:
            for relation in getattr(metadata, attr):
                if not REPLACES_ETC_REGEX.fullmatch(relation):
                    problems.append(
                        f'{label} "{relation}" is invalid; expected something like "libc (<< 5.1.2)"'
                        f' matching "{REPLACES_ETC_REGEX.pattern}"'
                    )
        return problems

    def validate(self) -> None:
        """Check the metadata against the rules for binary control files

        :raises ControlValidationError: With every problem found (not just the first).
        """
        problems = self.validation_problems()
        if problems:
            raise ControlValidationError(problems)

    def control_fields(self, installed_size: int) -> List[Tuple[str, str]]:
        metadata = self.with_defaults()
        fields = [
            ("Package", metadata.package),
            ("Version", metadata.version),
            ("Architecture", metadata.architecture),
            ("Maintainer", metadata.maintainer),
            ("Installed-Size", str(installed_size)),
        ]
        for field, attr, _ in _DEPENDS_FIELDS + _REPLACES_ETC_FIELDS:
            relations: Sequence[str] = getattr(metadata, attr)
            if relations:
                fields.append((field, ", ".join(relations)))
        for field, value in (
            ("Section", metadata.section),
            ("Priority", metadata.priority),
            ("Homepage", metadata.homepage),
        ):
            if value:
                fields.append((field, value))
        fields.append(("Description", _format_description(metadata.description)))
        return fields

    def render(self, installed_size: int) -> str:
        """Render the DEBIAN/control file

        Optional fields are omitted entirely when they are empty and the
        Description is always the last field.
        """
        return "".join(
            f"{field}: {value}\n" for field, value in self.control_fields(installed_size)
        )

    def write_control(self, fd: IO[str], installed_size: int) -> None:
        fd.write(self.render(installed_size))

