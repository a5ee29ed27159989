# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Plugins extending input resolution and reacting to notifications.

A plugin subclasses :class:`Plugin` and overrides the hooks it needs. The
evaluator asks the plugins to resolve input types it does not know itself;
the notification listener calls the event hooks, one plugin at a time.
"""

import importlib
from importlib.metadata import entry_points

from build_farm_service import log

ENTRY_POINT_GROUP = "build_farm_service.plugins"


class Plugin(object):
    """ Base class of the plugins, every hook is a no-op. """

    def __init__(self, conf):
        self.conf = conf

    def __repr__(self):
        return "<%s>" % self.__class__.__name__

    def supported_input_types(self):
        """ Return a dict mapping input type names to descriptions. """
        return {}

    def fetch_input(self, type, name, value, project, jobset):
        """ Resolve an input of one of the supported types.

        :return: a dict describing the resolved alternative (at least
            ``store_path``, optionally ``uri``, ``revision`` and
            ``sha256hash``), or None if the type is not handled here
        """
        return None

    def build_started(self, build):
        pass

    def build_finished(self, build, dependents):
        """ Called when a build and the queued builds depending on it finished. """
        pass

    def step_finished(self, step, log_path):
        pass

    def eval_started(self, correlation_id, jobset):
        pass

    def eval_added(self, correlation_id, jobset_eval):
        pass

    def eval_cached(self, correlation_id):
        pass

    def eval_failed(self, correlation_id):
        pass

    def jobset_error(self, jobset, message, responsible_inputs):
        """ Called when the error message of a jobset changed to a non-empty one.

        :param responsible_inputs: names of the inputs flagged as email
            responsible, whose owners should hear about the error
        """
        pass


def _import_class(name):
    module_name, _, class_name = name.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, class_name)


def _get_entry_points(group):
    discovered = entry_points()
    if hasattr(discovered, "select"):
        return list(discovered.select(group=group))
    return list(discovered.get(group, []))


def load_plugins(conf):
    """ Instantiate the configured plugins and those registered by packages.

    Plugins named in ``conf.plugins`` come first, in the configured order,
    followed by the entry points of the ``build_farm_service.plugins`` group
    sorted by name.
    """
    classes = [_import_class(name) for name in conf.plugins]
    for entry_point in sorted(_get_entry_points(ENTRY_POINT_GROUP), key=lambda ep: ep.name):
        plugin_cls = entry_point.load()
        if plugin_cls not in classes:
            classes.append(plugin_cls)

    plugins = []
    for plugin_cls in classes:
        if not (isinstance(plugin_cls, type) and issubclass(plugin_cls, Plugin)):
            raise TypeError("%r is not a Plugin subclass" % (plugin_cls,))
        plugins.append(plugin_cls(conf))
    log.debug("Loaded plugins: %r", plugins)
    return plugins
