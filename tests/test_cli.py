"""
CLI tests: exit codes and printed output of each subcommand.
"""

import json

import pytest

from buildprep import version as version_mod
from buildprep.cli import main
from conftest import FakeGit, FakeSession


@pytest.fixture
def git(monkeypatch):
    fake = FakeGit(long="v1.4.0-12-gdeadbee", dirty="v1.4.0-12-gdeadbee-dirty")
    monkeypatch.setattr(version_mod, "_run", fake)
    return fake


@pytest.fixture
def session(monkeypatch, eigen_tarball):
    fake = FakeSession(payload=eigen_tarball)
    monkeypatch.setattr("buildprep.fetcher.requests.Session", lambda: fake)
    return fake


def _paths(repo, build_dir):
    return ["--repo-root", str(repo), "--build-dir", str(build_dir)]


class TestCli:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_version_json(self, repo, build_dir, git, capsys):
        assert main(_paths(repo, build_dir) + ["version", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data == {"version_code": 14000012, "version_string": "v1.4.0-12-gdeadbee-dirty"}
        assert {c["cwd"] for c in git.calls} == {repo}

    def test_version_untagged_still_succeeds(self, repo, build_dir, monkeypatch, capsys):
        monkeypatch.setattr(version_mod, "_run", FakeGit(long="deadbee"))
        assert main(_paths(repo, build_dir) + ["version"]) == 0
        assert "version code unavailable" in capsys.readouterr().out

    def test_licenses(self, repo, tmp_path, build_dir, capsys):
        out = tmp_path / "raw"
        assert main(_paths(repo, build_dir) + ["licenses", "--out", str(out)]) == 0
        assert (out / "bsl_1_0.txt").is_file()
        assert "bsl_1_0.txt" in capsys.readouterr().out

    def test_licenses_missing_dir_fails(self, tmp_path, build_dir, capsys):
        empty = tmp_path / "empty-repo"
        empty.mkdir()
        assert main(_paths(empty, build_dir) + ["licenses"]) == 2
        assert "licenses failed" in capsys.readouterr().err

    def test_fetch(self, repo, build_dir, session, capsys):
        assert main(_paths(repo, build_dir) + ["fetch"]) == 0
        assert len(session.calls) == 1
        assert "eigen downloaded" in capsys.readouterr().out

    def test_fetch_present(self, repo, build_dir, session, eigen_include, capsys):
        argv = _paths(repo, build_dir) + ["-P", f"eigen.include_dir={eigen_include}", "fetch"]
        assert main(argv) == 0
        assert session.calls == []
        assert "eigen present" in capsys.readouterr().out

    def test_fetch_failure(self, repo, build_dir, monkeypatch, capsys):
        monkeypatch.setattr("buildprep.fetcher.requests.Session", lambda: FakeSession(status=404))
        assert main(_paths(repo, build_dir) + ["fetch"]) == 2
        assert "fetch failed" in capsys.readouterr().err

    def test_configure_json(self, repo, build_dir, eigen_include, capsys):
        argv = _paths(repo, build_dir) + ["configure", "--variant", "inProcess",
                                          "--include-dir", str(eigen_include), "--json"]
        assert main(argv) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["targets"] == ["openxr_monado"]
        assert data["arguments"][0] == f"-DEIGEN3_INCLUDE_DIR={eigen_include}"
        assert data["arguments"][-1] == "-DXRT_FEATURE_SERVICE=OFF"

    def test_configure_shared_stl_override(self, repo, build_dir, eigen_include, capsys):
        argv = _paths(repo, build_dir) + ["-P", "native.shared_stl=true", "configure",
                                          "--variant", "outOfProcess", "--include-dir", str(eigen_include), "--json"]
        assert main(argv) == 0
        assert "-DANDROID_STL=c++_shared" in json.loads(capsys.readouterr().out)["arguments"]

    def test_unknown_variant_is_usage_error(self, repo, build_dir):
        with pytest.raises(SystemExit) as exc:
            main(_paths(repo, build_dir) + ["configure", "--variant", "sideBySide"])
        assert exc.value.code == 2

    def test_prepare_json(self, repo, build_dir, git, session, capsys):
        assert main(_paths(repo, build_dir) + ["prepare", "--variant", "outOfProcess", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["version_code"] == 14000012
        assert data["fetched"] is True
        assert data["native"]["targets"] == ["openxr_monado", "monado-service"]

    def test_prepare_failure(self, repo, build_dir, git, monkeypatch, capsys):
        monkeypatch.setattr("buildprep.fetcher.requests.Session", lambda: FakeSession(status=404))
        assert main(_paths(repo, build_dir) + ["prepare", "--variant", "inProcess"]) == 2
        assert "provision failed" in capsys.readouterr().err

    def test_bad_override(self, capsys):
        assert main(["-P", "novalue", "config"]) == 2
        assert "config:" in capsys.readouterr().err

    def test_config_validate(self, capsys):
        assert main(["config", "--validate"]) == 0
        assert "configuration valid" in capsys.readouterr().out

    def test_config_validate_reports_issues(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("coordinator:\n  workers: 0\n", encoding="utf-8")
        assert main(["--config", str(path), "config", "--validate"]) == 1
        assert "coordinator.workers" in capsys.readouterr().out

    def test_config_dump(self, capsys):
        assert main(["config"]) == 0
        assert json.loads(capsys.readouterr().out)["eigen"]["fetch_version"] == "3.4.0"
