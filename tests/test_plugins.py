# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
import json

import pytest
from mock import MagicMock, patch

from build_farm_service.errors import InputResolutionError
from build_farm_service.plugins import Plugin, load_plugins
from build_farm_service.plugins.git_input import GitInput
from build_farm_service.plugins.run_command import RunCommand, matches_job
from tests import make_build, make_jobset


class FirstPlugin(Plugin):
    pass


class SecondPlugin(Plugin):
    pass


class NotAPlugin(object):
    pass


def _entry_point(name, cls):
    entry_point = MagicMock()
    entry_point.name = name
    entry_point.load.return_value = cls
    return entry_point


class TestLoadPlugins:

    @patch("build_farm_service.plugins._get_entry_points")
    def test_configured_then_entry_points(self, get_entry_points, conf):
        conf.set_item("plugins", ["tests.test_plugins:SecondPlugin"])
        get_entry_points.return_value = [
            _entry_point("zz", FirstPlugin),
            _entry_point("aa", SecondPlugin),
        ]
        plugins = load_plugins(conf)
        assert [type(p) for p in plugins] == [SecondPlugin, FirstPlugin]
        assert all(p.conf is conf for p in plugins)

    @patch("build_farm_service.plugins._get_entry_points")
    def test_not_a_plugin(self, get_entry_points, conf):
        get_entry_points.return_value = [_entry_point("bad", NotAPlugin)]
        with pytest.raises(TypeError):
            load_plugins(conf)

    @patch("build_farm_service.plugins._get_entry_points", return_value=[])
    def test_unknown_module(self, get_entry_points, conf):
        conf.set_item("plugins", ["no_such_module_anywhere:Plugin"])
        with pytest.raises(ImportError):
            load_plugins(conf)


class TestRunCommand:

    @pytest.mark.parametrize("pattern, matches", [
        (None, True),
        ("*:*:*", True),
        ("proj", True),
        ("proj:main:hello", True),
        ("::hello", True),
        ("proj:*:zlib", False),
        ("other:main:hello", False),
        ("proj:stable", False),
    ])
    def test_matches_job(self, db_session, pattern, matches):
        build = make_build(db_session, make_jobset(db_session), "hello", "/nix/store/h")
        assert matches_job(pattern, build) is matches

    def test_command_gets_build_json(self, conf, db_session, tmpdir):
        jobset = make_jobset(db_session)
        build = make_build(db_session, jobset, "hello", "/nix/store/h")
        dependent = make_build(db_session, jobset, "app", "/nix/store/a")
        copy = tmpdir.join("build.json")
        conf.set_item("run_command", [
            {"job": "proj:main:hello", "command": 'cp "$BFS_JSON" %s' % copy},
            {"job": "proj:main:zlib", "command": "exit 1"},
        ])

        RunCommand(conf).build_finished(build, [dependent])

        data = json.loads(copy.read())
        assert data["event"] == "buildFinished"
        assert data["id"] == build.id
        assert data["job"] == "hello"
        assert data["dependents"] == [dependent.id]
        assert data["outputs"] == {"out": "/nix/store/h"}

    @patch("build_farm_service.plugins.run_command.run_command")
    def test_failing_command_is_logged(self, run_command, conf, db_session):
        build = make_build(db_session, make_jobset(db_session), "hello", "/nix/store/h")
        conf.set_item("run_command", [{"command": "false"}, {"command": "true"}])
        run_command.side_effect = [RuntimeError("exit code 1"), ""]

        RunCommand(conf).build_finished(build, [])
        assert run_command.call_count == 2


@patch("build_farm_service.plugins.git_input.run_command")
class TestGitInput:

    def test_supported_types(self, run_command, conf):
        assert list(GitInput(conf).supported_input_types()) == ["git"]
        assert GitInput(conf).fetch_input("tarball", "src", "x", "proj", "main") is None

    def test_fetch(self, run_command, conf):
        run_command.side_effect = [
            "deadbeef\trefs/heads/stable\n",
            json.dumps({"path": "/nix/store/abc-repo", "sha256": "0abc"}),
        ]
        alternative = GitInput(conf).fetch_input(
            "git", "src", "https://example.com/repo.git stable", "proj", "main")
        assert alternative == {
            "uri": "https://example.com/repo.git",
            "store_path": "/nix/store/abc-repo",
            "revision": "deadbeef",
            "sha256hash": "0abc",
        }
        assert run_command.call_args_list[0][0][0] == [
            "git", "ls-remote", "https://example.com/repo.git", "refs/heads/stable"]
        assert run_command.call_args_list[1][0][0][-2:] == [
            "https://example.com/repo.git", "deadbeef"]

    def test_default_branch(self, run_command, conf):
        run_command.side_effect = [
            "deadbeef\trefs/heads/master\n", json.dumps({"path": "/nix/store/abc-repo"})]
        GitInput(conf).fetch_input("git", "src", "https://example.com/repo.git", "proj", "main")
        assert run_command.call_args_list[0][0][0][-1] == "refs/heads/master"

    @pytest.mark.parametrize("outputs", [
        [""],
        ["deadbeef\trefs/heads/master\n", "not json"],
    ])
    def test_errors(self, run_command, conf, outputs):
        run_command.side_effect = outputs
        with pytest.raises(InputResolutionError):
            GitInput(conf).fetch_input(
                "git", "src", "https://example.com/repo.git", "proj", "main")

    def test_empty_url(self, run_command, conf):
        with pytest.raises(InputResolutionError):
            GitInput(conf).fetch_input("git", "src", "  ", "proj", "main")
