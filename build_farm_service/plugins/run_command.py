# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Run shell commands when builds finish.

Rules come from ``conf.run_command``::

    RUN_COMMAND = [
        {"job": "myproject:*:release", "command": "publish-release"},
    ]

The ``job`` pattern is ``project:jobset:job`` where every part may be
``*`` (the default for missing parts). The command gets the path of a
JSON description of the build in the ``BFS_JSON`` environment variable.
"""

import json
import os
import tempfile

from build_farm_service import log
from build_farm_service.plugins import Plugin
from build_farm_service.utils import run_command


def matches_job(pattern, build):
    parts = (pattern or "*:*:*").split(":")
    parts += ["*"] * (3 - len(parts))
    project, jobset, job = parts[:3]
    jobset_name = build.jobset.name if build.jobset else None
    return all(
        expected in ("*", "") or expected == actual
        for expected, actual in ((project, build.project), (jobset, jobset_name),
                                 (job, build.job)))


class RunCommand(Plugin):

    def build_finished(self, build, dependents):
        commands = [rule["command"] for rule in self.conf.run_command
                    if matches_job(rule.get("job"), build)]
        if not commands:
            return

        data = build.json()
        data["event"] = "buildFinished"
        data["dependents"] = [dependent.id for dependent in dependents]

        with tempfile.NamedTemporaryFile("w", prefix="bfs-build-", suffix=".json") as f:
            json.dump(data, f)
            f.flush()
            env = dict(os.environ, BFS_JSON=f.name)
            for command in commands:
                log.info("Running %r for %r", command, build)
                try:
                    run_command(["sh", "-c", command], env=env)
                except RuntimeError as e:
                    log.warning("Notification command %r failed: %s", command, e)
