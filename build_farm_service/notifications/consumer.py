# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""The notification listener.

It first replays the notifications of builds which finished while nobody
was listening, then dispatches every message received on the bus to the
plugins, one plugin after the other.
"""

import inspect

from build_farm_service import log, messaging
from build_farm_service.errors import IgnoreMessage
from build_farm_service.models import Build, BuildStep, Jobset, JobsetEval, make_session
from build_farm_service.notifications import events
from build_farm_service.plugins import load_plugins


class NotificationConsumer(object):
    """ Dispatch notifications to plugins.

    :param conf: the service configuration
    :param plugins: the plugins to dispatch to, loaded from the
        configuration if not given
    """

    def __init__(self, conf, plugins=None):
        self.conf = conf
        self.plugins = load_plugins(conf) if plugins is None else list(plugins)

        # Our main lookup table for figuring out what to run in response
        # to which channel.
        self.on_message = {
            events.BUILD_STARTED: self.build_started,
            events.BUILD_FINISHED: self.build_finished,
            events.STEP_FINISHED: self.step_finished,
            events.EVAL_STARTED: self.eval_started,
            events.EVAL_ADDED: self.eval_added,
            events.EVAL_CACHED: self.eval_cached,
            events.EVAL_FAILED: self.eval_failed,
        }

    def sanity_check(self):
        """ On startup, make sure our implementation is sane. """
        for channel in events.LISTENED_CHANNELS:
            if channel not in self.on_message:
                raise KeyError("Channel %r not handled." % channel)

        expected = ["session", "msg"]
        for channel, callback in self.on_message.items():
            argspec = list(inspect.signature(callback).parameters)
            if argspec != expected:
                raise ValueError("Callback %r, channel %r has argspec %r!=%r" % (
                    callback, channel, argspec, expected))

    def dispatch(self, hook, *args):
        """ Call a hook of every plugin; a failing plugin does not stop the others. """
        for plugin in self.plugins:
            try:
                getattr(plugin, hook)(*args)
            except Exception:
                log.exception("Plugin %r failed in %s", plugin, hook)

    def process_backlog(self):
        """ Send the notifications of builds finished while not listening.

        :return: the number of builds processed
        """
        with make_session(self.conf) as session:
            builds = (
                session.query(Build)
                .filter(Build.notificationpendingsince.isnot(None))
                .order_by(Build.id)
                .all()
            )
            for build in builds:
                log.info("Sending pending notifications for build %d", build.id)
                self.dispatch("build_finished", build, [])
                build.notificationpendingsince = None
        return len(builds)

    def process_message(self, msg):
        log.debug("received %r", msg)
        handler = self.on_message.get(msg.channel)
        if handler is None:
            log.debug("Unhandled message %r", msg)
            return

        idx = "%s: %s" % (handler.__name__, msg.msg_id)
        with make_session(self.conf) as session:
            log.info("Calling   %s", idx)
            handler(session, msg)
            log.info("Done with %s", idx)

    def consume(self):
        """ Handle messages until the messaging backend stops yielding them. """
        for msg in messaging.listen(self.conf, events.LISTENED_CHANNELS):
            try:
                self.process_message(msg)
            except IgnoreMessage as e:
                log.warning("Ignoring %r: %s", msg, e)
            except Exception:
                log.exception("Failed while handling %r", msg)

    def run(self, backlog_only=False):
        self.sanity_check()
        count = self.process_backlog()
        log.info("Processed the notification backlog of %d builds", count)
        if backlog_only:
            return
        self.consume()

    def _get_build(self, session, build_id):
        build = Build.get_by_id(session, build_id)
        if build is None:
            raise IgnoreMessage("Build %d does not exist" % build_id)
        return build

    def build_started(self, session, msg):
        self.dispatch("build_started", self._get_build(session, msg.build_id))

    def build_finished(self, session, msg):
        build = self._get_build(session, msg.build_id)
        dependents = []
        for build_id in msg.dependent_ids:
            dependent = Build.get_by_id(session, build_id)
            if dependent is None:
                log.warning("Dependent build %d of build %d does not exist",
                            build_id, build.id)
                continue
            dependents.append(dependent)
        self.dispatch("build_finished", build, dependents)
        for finished in [build] + dependents:
            finished.notificationpendingsince = None

    def step_finished(self, session, msg):
        step = BuildStep.get(session, msg.build_id, msg.step_nr)
        if step is None:
            raise IgnoreMessage("Step %d of build %d does not exist" % (msg.step_nr, msg.build_id))
        self.dispatch("step_finished", step, msg.log_path)

    def eval_started(self, session, msg):
        jobset = Jobset.get_by_name(session, msg.project, msg.jobset)
        if jobset is None:
            raise IgnoreMessage("Jobset %s:%s does not exist" % (msg.project, msg.jobset))
        self.dispatch("eval_started", msg.correlation_id, jobset)

    def eval_added(self, session, msg):
        jobset_eval = session.get(JobsetEval, msg.eval_id)
        if jobset_eval is None:
            raise IgnoreMessage("Evaluation %d does not exist" % msg.eval_id)
        self.dispatch("eval_added", msg.correlation_id, jobset_eval)

    def eval_cached(self, session, msg):
        self.dispatch("eval_cached", msg.correlation_id)

    def eval_failed(self, session, msg):
        self.dispatch("eval_failed", msg.correlation_id)
