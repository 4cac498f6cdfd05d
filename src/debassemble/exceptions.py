from typing import cast, List


class DebassembleRuntimeError(RuntimeError):
    @property
    def message(self) -> str:
        return cast("str", self.args[0])


class ControlValidationError(DebassembleRuntimeError):
    def __init__(self, problems: List[str]) -> None:
        super().__init__("\n".join(problems), problems)

    @property
    def problems(self) -> List[str]:
        return cast("List[str]", self.args[1])


class OverlayResolutionError(DebassembleRuntimeError):
    pass


class PathGlobError(OverlayResolutionError):
    pass


class PackageAssemblyIOError(DebassembleRuntimeError):
    pass


class DebassembleInternalError(DebassembleRuntimeError):
    pass


class ArchiveInvariantError(DebassembleInternalError):
    pass
