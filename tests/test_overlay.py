import errno
import io

import pytest

from debassemble.exceptions import OverlayResolutionError
from debassemble.overlay import (
    ContentProvider,
    DirectoryProvider,
    ExcludeProvider,
    FileMapProvider,
    Overlay,
    Precedence,
    SourceFileReader,
    normalize_overlay_path,
)


def _read(fs: Overlay, path: str) -> bytes:
    with fs.open(path) as fd:
        return fd.read()


def _walk_paths(fs: Overlay):
    return [(e.path, e.is_dir) for e in fs.walk()]


def test_after_overrides_before():
    fs = Overlay()
    fs.bind("/", ContentProvider({"/usr/bin/tool": "A"}), Precedence.BEFORE)
    fs.bind("/", ContentProvider({"/usr/bin/tool": "B"}), Precedence.AFTER)
    assert _read(fs, "/usr/bin/tool") == b"B"


def test_before_does_not_override_earlier_after():
    fs = Overlay()
    fs.bind("/", ContentProvider({"/f": "A"}), Precedence.AFTER)
    fs.bind("/", ContentProvider({"/f": "B"}), Precedence.BEFORE)
    assert _read(fs, "/f") == b"A"


def test_later_after_wins():
    fs = Overlay()
    fs.bind("/", ContentProvider({"/f": "A"}), Precedence.AFTER)
    fs.bind("/", ContentProvider({"/f": "B"}), Precedence.AFTER)
    assert _read(fs, "/f") == b"B"


@pytest.mark.parametrize("replace_first", [True, False])
def test_replace_wins_regardless_of_order(replace_first):
    fs = Overlay()
    if replace_first:
        fs.bind("/", ContentProvider({"/f": "R"}), Precedence.REPLACE)
    fs.bind("/", ContentProvider({"/f": "A"}), Precedence.AFTER)
    fs.bind("/", ContentProvider({"/f": "B"}), Precedence.BEFORE)
    if not replace_first:
        fs.bind("/", ContentProvider({"/f": "R"}), Precedence.REPLACE)
    assert _read(fs, "/f") == b"R"
    (entry,) = [e for e in fs.walk() if not e.is_dir]
    assert entry.size == 1


def test_before_fills_gaps():
    fs = Overlay()
    fs.bind("/", ContentProvider({"/a": "1"}), Precedence.AFTER)
    fs.bind("/", ContentProvider({"/a": "x", "/b": "2"}), Precedence.BEFORE)
    assert _read(fs, "/a") == b"1"
    assert _read(fs, "/b") == b"2"


def test_walk_order_and_synthesized_directories():
    fs = Overlay()
    fs.bind(
        "/",
        ContentProvider(
            {
                "/usr/share/doc/pkg/copyright": "c",
                "/etc/pkg.conf": "e",
                "/usr/bin/z": "z",
                "/usr/bin/a": "a",
                "/a-file": "f",
            }
        ),
    )
    assert _walk_paths(fs) == [
        ("/", True),
        ("/a-file", False),
        ("/etc", True),
        ("/etc/pkg.conf", False),
        ("/usr", True),
        ("/usr/bin", True),
        ("/usr/bin/a", False),
        ("/usr/bin/z", False),
        ("/usr/share", True),
        ("/usr/share/doc", True),
        ("/usr/share/doc/pkg", True),
        ("/usr/share/doc/pkg/copyright", False),
    ]


def test_empty_overlay_only_has_root():
    assert _walk_paths(Overlay()) == [("/", True)]


def test_directory_provider(tmp_path):
    (tmp_path / "usr" / "bin").mkdir(parents=True)
    (tmp_path / "usr" / "bin" / "tool").write_bytes(b"binary")
    (tmp_path / "usr" / "bin" / "tool").chmod(0o755)
    (tmp_path / "README").write_text("read me")

    fs = Overlay()
    fs.bind("/", DirectoryProvider(str(tmp_path)))
    entries = {e.path: e for e in fs.walk()}
    assert list(entries) == ["/", "/README", "/usr", "/usr/bin", "/usr/bin/tool"]
    assert entries["/usr/bin/tool"].mode == 0o755
    assert entries["/usr/bin/tool"].size == 6
    assert entries["/usr"].mode == 0o755
    assert _read(fs, "/README") == b"read me"


def test_missing_directory_fails_at_walk(tmp_path):
    fs = Overlay()
    # Binding is lazy; the failure surfaces when the tree is resolved
    fs.bind("/", DirectoryProvider(str(tmp_path / "missing")))
    with pytest.raises(OverlayResolutionError):
        list(fs.walk())


def test_file_map_provider(tmp_path):
    source = tmp_path / "build" / "tool"
    source.parent.mkdir()
    source.write_text("tool")
    fs = Overlay()
    fs.bind("/", FileMapProvider({"usr/local/bin/tool": str(source)}))
    assert _walk_paths(fs)[-1] == ("/usr/local/bin/tool", False)
    assert _read(fs, "/usr/local/bin/tool") == b"tool"


def test_file_map_provider_missing_source(tmp_path):
    fs = Overlay()
    fs.bind("/", FileMapProvider({"/usr/bin/tool": str(tmp_path / "nope")}))
    with pytest.raises(OverlayResolutionError) as e_info:
        list(fs.walk())
    assert "/usr/bin/tool" in e_info.value.message


def test_exclude_provider():
    provider = ContentProvider({"/postinst": "s", "/usr/bin/tool": "t"})
    fs = Overlay()
    fs.bind("/", ExcludeProvider(provider, "/postinst"))
    assert [p for p, _ in _walk_paths(fs)] == ["/", "/usr", "/usr/bin", "/usr/bin/tool"]
    assert fs.lookup("/postinst") is None


def test_exclude_provider_with_glob():
    provider = ContentProvider({"/a.tmp": "1", "/b.txt": "2", "/c/d.tmp": "3"})
    fs = Overlay()
    fs.bind("/", ExcludeProvider(provider, "/*.tmp"))
    assert [p for p, d in _walk_paths(fs) if not d] == ["/b.txt", "/c/d.tmp"]


def test_exclusion_does_not_hide_other_providers():
    fs = Overlay()
    fs.bind(
        "/",
        ExcludeProvider(
            ContentProvider({"/postinst": "script", "/usr/x": "x"}),
            "/postinst",
        ),
        Precedence.BEFORE,
    )
    fs.bind("/", ContentProvider({"/postinst": "data"}), Precedence.BEFORE)
    assert [p for p, _ in _walk_paths(fs)] == ["/", "/postinst", "/usr", "/usr/x"]
    assert _read(fs, "/postinst") == b"data"


def test_open_errors():
    fs = Overlay()
    fs.bind("/", ContentProvider({"/usr/bin/tool": "t"}))
    with pytest.raises(OverlayResolutionError):
        fs.open("/missing")
    directory = next(e for e in fs.walk() if e.path == "/usr")
    with pytest.raises(OverlayResolutionError):
        directory.open()


def test_mount_point():
    fs = Overlay()
    fs.bind("/usr/share/doc/pkg", ContentProvider({"/copyright": "c"}))
    assert _walk_paths(fs) == [
        ("/", True),
        ("/usr", True),
        ("/usr/share", True),
        ("/usr/share/doc", True),
        ("/usr/share/doc/pkg", True),
        ("/usr/share/doc/pkg/copyright", False),
    ]
    assert _read(fs, "/usr/share/doc/pkg/copyright") == b"c"
    assert fs.lookup("/copyright") is None


def test_nested_overlay():
    inner = Overlay()
    inner.bind("/", ContentProvider({"/a": "inner-a", "/b": "inner-b"}))
    outer = Overlay()
    outer.bind("/", inner, Precedence.BEFORE)
    outer.bind("/", ContentProvider({"/b": "outer-b"}))
    assert _read(outer, "/a") == b"inner-a"
    assert _read(outer, "/b") == b"outer-b"


def test_file_and_directory_conflict():
    fs = Overlay()
    fs.bind("/", ContentProvider({"/usr": "file"}))
    fs.bind("/", ContentProvider({"/usr/bin/tool": "t"}))
    with pytest.raises(OverlayResolutionError):
        list(fs.walk())


def test_bind_into_itself():
    fs = Overlay()
    with pytest.raises(ValueError):
        fs.bind("/", fs)


@pytest.mark.parametrize(
    "path,expected",
    [
        ("", "/"),
        ("/", "/"),
        ("usr/bin", "/usr/bin"),
        ("./usr//bin/", "/usr/bin"),
    ],
)
def test_normalize_overlay_path(path, expected):
    assert normalize_overlay_path(path) == expected


def test_normalize_overlay_path_rejects_parent_references():
    with pytest.raises(ValueError):
        normalize_overlay_path("/usr/../etc")


class _FailingReader(io.BytesIO):
    def read(self, size=-1):
        raise OSError(errno.EIO, "Input/output error")


def test_read_errors_name_the_source():
    reader = SourceFileReader(_FailingReader(), '"/usr/bin/tool" (from "/src/tool")', 4)
    with pytest.raises(OverlayResolutionError) as e_info:
        reader.read(4)
    assert e_info.value.message == (
        'Unable to read "/usr/bin/tool" (from "/src/tool"): [Errno 5] Input/output error'
    )


@pytest.mark.parametrize(
    "content,expected_size",
    [
        (b"abc", 4),
        (b"abcde", 4),
    ],
)
def test_reader_detects_size_changes(content, expected_size):
    with SourceFileReader(io.BytesIO(content), '"/f"', expected_size) as reader:
        with pytest.raises(OverlayResolutionError) as e_info:
            while reader.read(2):
                pass
    assert e_info.value.message == 'The size of "/f" changed during the build'
