import io
import tarfile
from pathlib import Path

import pytest
import requests

from buildprep import config as config_mod
from buildprep import fetcher as fetcher_mod
from buildprep import version as version_mod

BSL_TEXT = """Boost Software License - Version 1.0 - August 17th, 2003

Permission is hereby granted, free of charge, to any person or organization
obtaining a copy of the software & accompanying documentation covered by
this license (the "Software") to use, reproduce, display, distribute,
"""


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """No stray config files, no cached singletons between tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("BUILDPREP_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    config_mod.reset()
    monkeypatch.setattr(version_mod, "_ORACLE", None)
    monkeypatch.setattr(fetcher_mod, "_MANAGER", None)
    yield
    config_mod.reset()


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    (root / ".git").mkdir(parents=True)
    licenses = root / "LICENSES"
    licenses.mkdir()
    (licenses / "BSL-1.0.txt").write_text(BSL_TEXT, encoding="utf-8")
    (licenses / "MIT.txt").write_text("MIT License\n\nCopyright <year> <holder>\n", encoding="utf-8")
    (licenses / "README.md").write_text("not a license\n", encoding="utf-8")
    return root


@pytest.fixture
def build_dir(tmp_path):
    return tmp_path / "build"


@pytest.fixture
def cfg(repo, build_dir):
    return config_mod.load(overrides={"paths.repo_root": str(repo), "paths.build_dir": str(build_dir)})


class FakeGit:
    """Stands in for the git runner; answers describe queries by flag."""

    def __init__(self, long="v1.4.0-12-gdeadbee", dirty=None, rc=0):
        self.long = long
        self.dirty = dirty if dirty is not None else long
        self.rc = rc
        self.calls = []

    def __call__(self, cmd, cwd, timeout=None):
        self.calls.append({"cmd": list(cmd), "cwd": Path(cwd), "timeout": timeout})
        if self.rc is None:
            return None, "", "git: not found"
        if self.rc != 0:
            return self.rc, "", "fatal: not a git repository"
        out = self.dirty if "--dirty" in cmd else self.long
        return 0, (out or "") + "\n", ""


@pytest.fixture
def fake_git():
    return FakeGit()


class FakeResponse:
    def __init__(self, payload=b"", status=200):
        self.payload = payload
        self.status_code = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.payload), chunk_size):
            yield self.payload[i:i + chunk_size]


class FakeSession:
    """Records every GET; returns a canned payload or raises a canned error."""

    def __init__(self, payload=b"", status=200, error=None):
        self.payload = payload
        self.status = status
        self.error = error
        self.calls = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append({"url": url, "stream": stream, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.payload, self.status)


def make_tarball(root_name="eigen-3.4.0", files=None, hardlinks=None):
    """hardlinks maps a member name to its link target, both relative to the archive root."""
    files = files if files is not None else {"Eigen/Core": b"// Eigen core header\n"}
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for rel, data in files.items():
            name = f"{root_name}/{rel}" if root_name else rel
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        for name, target in (hardlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.LNKTYPE
            info.linkname = target
            tar.addfile(info)
    return buf.getvalue()


@pytest.fixture
def eigen_tarball():
    return make_tarball()


@pytest.fixture
def fake_session(eigen_tarball):
    return FakeSession(payload=eigen_tarball)


@pytest.fixture
def eigen_include(tmp_path):
    path = tmp_path / "eigen3"
    (path / "Eigen").mkdir(parents=True)
    (path / "Eigen" / "Core").write_text("// core\n", encoding="utf-8")
    return path
