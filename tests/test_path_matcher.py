import pytest

from debassemble.exceptions import PathGlobError
from debassemble.path_matcher import compile_path_glob, path_matcher


@pytest.mark.parametrize(
    "pattern,path,expected",
    [
        ("/etc/*/**", "/etc/foo/bar.conf", True),
        ("/etc/*/**", "/etc/foo/sub/dir/bar.conf", False),
        ("/etc/**", "/etc/foo.conf", True),
        ("/etc/**", "/etc/foo/bar.conf", False),
        ("/etc/*/**", "/etc/foo.conf", False),
        ("/etc/*", "/etc/foo.conf", True),
        ("/etc/*", "/etc/foo/bar.conf", False),
        ("/usr/bin/mk?eb", "/usr/bin/mkdeb", True),
        ("/usr/bin/mk?eb", "/usr/bin/mk/eb", False),
        ("/usr/lib/*.so.[0-9]", "/usr/lib/libfoo.so.1", True),
        ("/usr/lib/*.so.[!0-9]", "/usr/lib/libfoo.so.1", False),
        ("/usr/lib/*.so.[!0-9]", "/usr/lib/libfoo.so.x", True),
        ("/a[/]b", "/a/b", False),
        ("/usr/share/doc/a+b(1)", "/usr/share/doc/a+b(1)", True),
    ],
)
def test_compile_path_glob(pattern, path, expected):
    assert bool(compile_path_glob(pattern).match(path)) is expected


def test_unterminated_character_class():
    with pytest.raises(PathGlobError) as e_info:
        compile_path_glob("/etc/[abc")
    assert "not terminated" in e_info.value.message


def test_path_matcher_mixes_exact_and_globs():
    matches = path_matcher(["/preinst", "/etc/*.conf"])
    assert matches("/preinst")
    assert matches("/etc/a.conf")
    assert not matches("/usr/preinst")
    assert not matches("/etc/a/b.conf")


def test_path_matcher_without_patterns():
    matches = path_matcher([])
    assert not matches("/")
    assert not matches("/etc/foo")
