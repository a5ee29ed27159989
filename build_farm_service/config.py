# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Configuration handler functions."""

import importlib.util
import os
from os import path

from build_farm_service import logger

DEFAULT_CONFIG_FILE = "/etc/build-farm-service/config.py"
DEFAULT_CONFIG_SECTION = "ProdConfiguration"

# Repository checkout fallback, used when nothing is installed under /etc
_checkout_config_file = path.abspath(
    path.join(path.dirname(__file__), "..", "conf", "config.py"))


def asbool(value):
    """ Cast environment values to boolean. """
    return str(value).lower() in ("y", "yes", "t", "true", "1", "on")


def init_config():
    """
    Configure the service from the configuration file and the environment.

    The file is taken from ``BFS_CONFIG_FILE`` and the section (a class in
    that file) from ``BFS_CONFIG_SECTION``. The ``BFS_EVALUATOR_DRY_RUN``
    and ``BFS_EVALUATOR_DEBUG`` toggles are applied on top.

    :return: the populated Config object
    """
    config_file = os.environ.get("BFS_CONFIG_FILE", DEFAULT_CONFIG_FILE)
    if "BFS_CONFIG_FILE" not in os.environ and not path.exists(config_file):
        config_file = _checkout_config_file
    config_section = os.environ.get("BFS_CONFIG_SECTION", DEFAULT_CONFIG_SECTION)

    try:
        spec = importlib.util.spec_from_file_location("bfs_runtime_config", config_file)
        config_module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(config_module)
    except (OSError, SyntaxError) as e:
        raise SystemError(
            "Configuration file {} could not be loaded: {}".format(config_file, e))

    try:
        config_section_obj = getattr(config_module, config_section)
    except AttributeError:
        raise SystemError(
            "Configuration section {} was not found in {}".format(config_section, config_file))

    conf = Config(config_section_obj)
    if "BFS_EVALUATOR_DRY_RUN" in os.environ:
        conf.set_item("dry_run", asbool(os.environ["BFS_EVALUATOR_DRY_RUN"]))
    if "BFS_EVALUATOR_DEBUG" in os.environ:
        conf.set_item("debug", asbool(os.environ["BFS_EVALUATOR_DEBUG"]))
    return conf


class Config(object):
    """Class representing the build farm service configuration."""

    _defaults = {
        "sqlalchemy_database_uri": {
            "type": str,
            "default": "postgresql:///build_farm",
            "desc": "RDB URL."},
        "messaging": {
            "type": str,
            "default": "pg",
            "desc": "The notification channel backend to use."},
        "log_backend": {
            "type": str,
            "default": None,
            "desc": "Log backend"},
        "log_file": {
            "type": str,
            "default": "",
            "desc": "Path to log file"},
        "log_level": {
            "type": str,
            "default": "info",
            "desc": "Log level"},
        "eval_jobs_command": {
            "type": list,
            "default": ["hydra-eval-jobs"],
            "desc": "Command line of the external expression evaluator."},
        "eval_jobs_workers": {
            "type": int,
            "default": 1,
            "desc": "Number of evaluator worker processes."},
        "evaluator_timeout": {
            "type": int,
            "default": 600,
            "desc": "Wall-clock limit of one evaluator invocation, in seconds."},
        "max_run_time": {
            "type": int,
            "default": 3600,
            "desc": "Hard wall-clock limit of one jobset evaluation run, in seconds. "
                    "0 disables the limit."},
        "gc_roots_dir": {
            "type": str,
            "default": "/nix/var/nix/gcroots/build-farm",
            "desc": "Directory where the evaluator registers its GC roots."},
        "flake_metadata_command": {
            "type": list,
            "default": ["nix", "flake", "metadata", "--refresh", "--json", "--"],
            "desc": "Command used to lock a flake reference."},
        "flake_metadata_timeout": {
            "type": int,
            "default": 600,
            "desc": "Wall-clock limit of locking a flake reference, in seconds."},
        "nix_store_command": {
            "type": str,
            "default": "nix-store",
            "desc": "Content store command line tool."},
        "store_remote": {
            "type": str,
            "default": "",
            "desc": "Remote store URI paths are fetched from when missing locally."},
        "store_fetch_timeout": {
            "type": int,
            "default": 600,
            "desc": "Time limit for fetching one path from the remote store, in seconds."},
        "net_retry_interval": {
            "type": int,
            "default": 30,
            "desc": "Interval between retries of network operations, in seconds."},
        "plugins": {
            "type": list,
            "default": [],
            "desc": "Additional plugin classes, as module:Class names."},
        "run_command": {
            "type": list,
            "default": [],
            "desc": "RunCommand plugin rules, dicts with 'job' and 'command' keys."},
        "git_prefetch_command": {
            "type": str,
            "default": "nix-prefetch-git",
            "desc": "Command used to copy a git checkout into the content store."},
        "git_timeout": {
            "type": int,
            "default": 600,
            "desc": "Time limit for git operations, in seconds."},
        "notify_poll_interval": {
            "type": int,
            "default": 10,
            "desc": "How long the listener blocks for notifications at once, in seconds."},
        "dry_run": {
            "type": bool,
            "default": False,
            "desc": "Evaluate and report, but never mutate persistent state or notify."},
        "debug": {
            "type": bool,
            "default": False,
            "desc": "Trace the exact external evaluator invocation."},
    }

    def __init__(self, conf_section_obj=None):
        """Initialize the Config object with defaults and then override them
        with runtime values from the configuration section."""

        for name, values in self._defaults.items():
            self.set_item(name, values["default"])

        if conf_section_obj is None:
            return

        for key in dir(conf_section_obj):
            # skip keys starting with underscore
            if key.startswith("_"):
                continue
            # set item (lower key)
            self.set_item(key.lower(), getattr(conf_section_obj, key))

    def set_item(self, key, value):
        if key == "set_item" or key.startswith("_"):
            raise Exception("Configuration item's name is not allowed: %s" % key)

        # customized check & set if there's a corresponding handler
        setifok_func = "_setifok_{}".format(key)
        if hasattr(self, setifok_func):
            getattr(self, setifok_func)(value)
            return

        # managed/registered configuration items
        if key in self._defaults:
            # type conversion for configuration item
            convert = self._defaults[key]["type"]
            if convert in [bool, int, list, str]:
                try:
                    setattr(self, key, convert(value))
                except (TypeError, ValueError):
                    raise TypeError("Configuration value conversion failed for name: %s" % key)
            # if type is None, do not perform any conversion
            elif convert is None:
                setattr(self, key, value)
            # unknown type/unsupported conversion
            else:
                raise TypeError("Unsupported type %s for configuration item name: %s" % (
                    convert, key))
        # passthrough for unmanaged configuration items
        else:
            setattr(self, key, value)

    def _setifok_messaging(self, s):
        s = str(s)
        if s not in ("pg", "in_memory"):
            raise ValueError("Unsupported messaging system.")
        self.messaging = s

    def _setifok_log_backend(self, s):
        if s is None:
            self.log_backend = "console"
            return
        if s not in logger.supported_log_backends():
            raise ValueError("Unsupported log backend")
        self.log_backend = str(s)

    def _setifok_log_file(self, s):
        if s is None:
            self.log_file = ""
        else:
            self.log_file = str(s)

    def _setifok_log_level(self, s):
        level = str(s).lower()
        self.log_level = logger.str_to_log_level(level)

    def _setifok_eval_jobs_command(self, cmd):
        if isinstance(cmd, str):
            cmd = cmd.split()
        if not cmd:
            raise ValueError("eval_jobs_command must not be empty")
        self.eval_jobs_command = [str(x) for x in cmd]

    def _setifok_flake_metadata_command(self, cmd):
        if isinstance(cmd, str):
            cmd = cmd.split()
        self.flake_metadata_command = [str(x) for x in cmd]

    def _setifok_eval_jobs_workers(self, i):
        if not isinstance(i, int):
            raise TypeError("eval_jobs_workers needs to be an int")
        if i < 1:
            raise ValueError("eval_jobs_workers must be >= 1")
        self.eval_jobs_workers = i

    def _setifok_evaluator_timeout(self, i):
        self.evaluator_timeout = self._non_negative("evaluator_timeout", i)

    def _setifok_max_run_time(self, i):
        self.max_run_time = self._non_negative("max_run_time", i)

    def _setifok_store_fetch_timeout(self, i):
        self.store_fetch_timeout = self._non_negative("store_fetch_timeout", i)

    def _setifok_net_retry_interval(self, i):
        self.net_retry_interval = self._non_negative("net_retry_interval", i)

    def _setifok_notify_poll_interval(self, i):
        self.notify_poll_interval = self._non_negative("notify_poll_interval", i)

    def _setifok_plugins(self, names):
        if not isinstance(names, (list, tuple)):
            raise TypeError("plugins needs to be a list.")
        for name in names:
            if ":" not in str(name):
                raise ValueError("Plugin %r is not in the module:Class format" % name)
        self.plugins = [str(x) for x in names]

    def _setifok_run_command(self, rules):
        if not isinstance(rules, (list, tuple)):
            raise TypeError("run_command needs to be a list.")
        for rule in rules:
            if not isinstance(rule, dict) or "command" not in rule:
                raise ValueError("run_command rule %r has no command" % (rule,))
        self.run_command = [dict(rule) for rule in rules]

    @staticmethod
    def _non_negative(name, i):
        if not isinstance(i, (int, float)) or isinstance(i, bool):
            raise TypeError("%s needs to be a number" % name)
        if i < 0:
            raise ValueError("%s must be >= 0" % name)
        return i
