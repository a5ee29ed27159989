# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
""" Client of the content-addressed store the build artifacts live in. """

from build_farm_service import log
from build_farm_service.errors import StoreError
from build_farm_service.utils import retry, run_command


class ContentStore(object):
    """ Checks and fetches store paths through the store command line tool.

    Paths missing locally are fetched from ``conf.store_remote`` when one is
    configured. A fetch is retried every ``conf.net_retry_interval`` seconds
    until ``conf.store_fetch_timeout`` is exceeded.
    """

    def __init__(self, conf):
        self.conf = conf

    def is_valid_path(self, path):
        cmd = [self.conf.nix_store_command, "--check-validity", path]
        try:
            run_command(cmd, timeout=self.conf.store_fetch_timeout, error_cls=StoreError)
        except StoreError:
            return False
        return True

    def fetch_path(self, path):
        """ Fetch a path from the remote store.

        :raises StoreError: if no remote is configured or the fetch failed
            until the timeout
        """
        if not self.conf.store_remote:
            raise StoreError("Path %s is not valid and no remote store is configured" % path)

        @retry(timeout=self.conf.store_fetch_timeout,
               interval=self.conf.net_retry_interval, wait_on=StoreError)
        def fetch():
            run_command(
                [self.conf.nix_store_command, "--realise", path,
                 "--option", "substituters", self.conf.store_remote],
                timeout=self.conf.store_fetch_timeout, error_cls=StoreError)

        log.info("Fetching %s from %s", path, self.conf.store_remote)
        fetch()

    def ensure_path(self, path):
        """ Return whether the path is available locally, fetching it if needed. """
        if self.is_valid_path(path):
            return True
        try:
            self.fetch_path(path)
        except StoreError as e:
            log.warning("Unable to fetch %s: %s", path, e)
            return False
        return self.is_valid_path(path)
