# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Resolution of ``git`` jobset inputs."""

import json

from build_farm_service import log
from build_farm_service.errors import InputResolutionError
from build_farm_service.plugins import Plugin
from build_farm_service.utils import retry, run_command


class GitInput(Plugin):
    """ Resolve ``git`` inputs to the head of a branch, copied into the store.

    The input value is ``url [branch]``; the branch defaults to ``master``.
    """

    def supported_input_types(self):
        return {"git": "Git checkout"}

    def _run(self, cmd):
        @retry(timeout=self.conf.git_timeout, interval=self.conf.net_retry_interval,
               wait_on=InputResolutionError)
        def run():
            return run_command(cmd, timeout=self.conf.git_timeout,
                               error_cls=InputResolutionError)
        return run()

    def get_latest(self, url, branch):
        """Get the latest commit ID of the branch.

        :returns: str -- the commit ID of the branch head
        :raises: InputResolutionError
        """
        ref = "refs/heads/%s" % branch
        output = self._run(["git", "ls-remote", url, ref])
        for line in output.splitlines():
            if line.endswith("\t" + ref):
                return line.split("\t")[0]
        raise InputResolutionError("Couldn't determine the head of %s in %s" % (branch, url))

    def fetch_input(self, type, name, value, project, jobset):
        if type != "git":
            return None

        parts = value.split()
        if not parts:
            raise InputResolutionError("Input %s has an empty git URL" % name)
        url = parts[0]
        branch = parts[1] if len(parts) > 1 else "master"

        revision = self.get_latest(url, branch)
        log.info("Input %s: %s %s is at %s", name, url, branch, revision)

        output = self._run([self.conf.git_prefetch_command, "--quiet", url, revision])
        try:
            prefetched = json.loads(output)
            store_path = prefetched["path"]
        except (ValueError, KeyError):
            raise InputResolutionError(
                "Unexpected output of %s for %s: %r" % (
                    self.conf.git_prefetch_command, url, output))

        return {
            "uri": url,
            "store_path": store_path,
            "revision": revision,
            "sha256hash": prefetched.get("sha256"),
        }
