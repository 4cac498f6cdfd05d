import os

import pytest
from debian.deb822 import Deb822

from debassemble.control import PackageMetadata

# Disable dpkg's translation layer.  It is very slow and disabling it makes it easier to debug
# test-failure reports from systems with translations active.
os.environ["DPKG_NLS"] = "0"


@pytest.fixture(autouse=True)
def _no_source_date_epoch(monkeypatch):
    monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)


@pytest.fixture()
def mkdeb_metadata() -> PackageMetadata:
    return PackageMetadata.from_deb822(
        Deb822(
            {
                "Package": "mkdeb",
                "Version": "0.1.0",
                "Architecture": "amd64",
                "Maintainer": "Chris Bednarski <banzaimonkey@gmail.com>",
                "Homepage": "https://github.com/cbednarski/mkdeb",
                "Description": "A CLI tool for building debian packages",
            }
        )
    )


@pytest.fixture()
def package_root(tmp_path):
    root = tmp_path / "root"
    (root / "usr" / "bin").mkdir(parents=True)
    (root / "etc" / "mkdeb").mkdir(parents=True)
    (root / "usr" / "bin" / "mkdeb").write_bytes(b"#!/bin/sh\necho mkdeb\n")
    (root / "usr" / "bin" / "mkdeb").chmod(0o755)
    (root / "etc" / "mkdeb" / "mkdeb.conf").write_text("verbose = false\n")
    (root / "postinst").write_text("#!/bin/sh\nexit 0\n")
    return root
