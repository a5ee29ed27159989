# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Generic messaging functions.

Notifications travel over named channels with a tab-joined text payload.
The ``pg`` backend uses PostgreSQL NOTIFY/LISTEN; the ``in_memory`` backend
keeps a process-local queue and is used by the tests and offline runs.
"""

import collections

import psycopg
import sqlalchemy
from sqlalchemy import event, text

from build_farm_service import log
from build_farm_service.errors import IgnoreMessage
from build_farm_service.notifications import events


class BaseMessage(object):
    #: Channel the message is carried on
    channel = None
    #: Names of the payload fields, in order
    fields = ()

    def __init__(self, msg_id):
        """
        A base class to abstract messages from different backends
        :param msg_id: the id of the msg, unique for the process lifetime
        """
        self.msg_id = msg_id

    def __repr__(self):
        return "<%s %s>" % (self.__class__.__name__, ", ".join(
            "%s=%r" % (name, getattr(self, name)) for name in self.fields))

    @staticmethod
    def from_notification(channel, payload, msg_id=None):
        """
        Takes a channel name and its payload and converts it to a message
        object.

        :param channel: the channel the notification was received on
        :param payload: the tab-joined payload of the notification
        :return: an object of BaseMessage descent
        :raises IgnoreMessage: if the channel is unknown or the payload does
            not match what the channel carries
        """
        try:
            message_cls = _message_classes[channel]
        except KeyError:
            raise IgnoreMessage("Unknown channel %r" % channel)

        values = payload.split("\t") if payload else []
        try:
            return message_cls.from_payload(msg_id or "%s:%s" % (channel, payload), values)
        except (TypeError, ValueError) as e:
            raise IgnoreMessage(
                "Malformed payload %r on channel %r: %s" % (payload, channel, e))

    @classmethod
    def from_payload(cls, msg_id, values):
        if len(values) != len(cls.fields):
            raise ValueError("expected %d fields, got %d" % (len(cls.fields), len(values)))
        return cls(msg_id, *values)

    def payload_fields(self):
        return [getattr(self, name) for name in self.fields]


class BuildStarted(BaseMessage):
    """ A build was picked up by the build execution subsystem
    :param build_id: the id of the build
    """
    channel = events.BUILD_STARTED
    fields = ("build_id",)

    def __init__(self, msg_id, build_id):
        super(BuildStarted, self).__init__(msg_id)
        self.build_id = int(build_id)


class BuildFinished(BaseMessage):
    """ A build finished
    :param build_id: the id of the build
    :param dependent_ids: ids of the queued builds depending on it, which
        were finished along with it (e.g. as dependency failures)
    """
    channel = events.BUILD_FINISHED
    fields = ("build_id", "dependent_ids")

    def __init__(self, msg_id, build_id, dependent_ids=()):
        super(BuildFinished, self).__init__(msg_id)
        self.build_id = int(build_id)
        self.dependent_ids = [int(x) for x in dependent_ids]

    @classmethod
    def from_payload(cls, msg_id, values):
        if not values:
            raise ValueError("expected at least one field")
        return cls(msg_id, values[0], values[1:])

    def payload_fields(self):
        return [self.build_id] + list(self.dependent_ids)


class StepFinished(BaseMessage):
    """ A build step finished
    :param build_id: the id of the build the step belongs to
    :param step_nr: the number of the step within the build
    :param log_path: path of the log file of the step
    """
    channel = events.STEP_FINISHED
    fields = ("build_id", "step_nr", "log_path")

    def __init__(self, msg_id, build_id, step_nr, log_path):
        super(StepFinished, self).__init__(msg_id)
        self.build_id = int(build_id)
        self.step_nr = int(step_nr)
        self.log_path = log_path


class EvalStarted(BaseMessage):
    channel = events.EVAL_STARTED
    fields = ("correlation_id", "project", "jobset")

    def __init__(self, msg_id, correlation_id, project, jobset):
        super(EvalStarted, self).__init__(msg_id)
        self.correlation_id = correlation_id
        self.project = project
        self.jobset = jobset


class EvalAdded(BaseMessage):
    channel = events.EVAL_ADDED
    fields = ("correlation_id", "eval_id")

    def __init__(self, msg_id, correlation_id, eval_id):
        super(EvalAdded, self).__init__(msg_id)
        self.correlation_id = correlation_id
        self.eval_id = int(eval_id)


class EvalCached(BaseMessage):
    channel = events.EVAL_CACHED
    fields = ("correlation_id",)

    def __init__(self, msg_id, correlation_id):
        super(EvalCached, self).__init__(msg_id)
        self.correlation_id = correlation_id


class EvalFailed(BaseMessage):
    channel = events.EVAL_FAILED
    fields = ("correlation_id",)

    def __init__(self, msg_id, correlation_id):
        super(EvalFailed, self).__init__(msg_id)
        self.correlation_id = correlation_id


class BuildsAdded(BaseMessage):
    """ New builds were queued
    :param build_id: the lowest id among the new builds
    """
    channel = events.BUILDS_ADDED
    fields = ("build_id",)

    def __init__(self, msg_id, build_id):
        super(BuildsAdded, self).__init__(msg_id)
        self.build_id = int(build_id)


_message_classes = {
    cls.channel: cls
    for cls in (BuildStarted, BuildFinished, StepFinished, EvalStarted,
                EvalAdded, EvalCached, EvalFailed, BuildsAdded)
}


def encode_payload(fields):
    return "\t".join(str(field) for field in fields)


def publish(channel, fields, conf, session=None):
    """ Publish a single notification to the configured backend, and return.

    When a session is given the notification is tied to its transaction: it
    is delivered once the session commits and never if it rolls back.
    """
    try:
        handler = _messaging_backends[conf.messaging]["publish"]
    except KeyError:
        raise KeyError("No messaging backend found for %r" % conf.messaging)
    payload = encode_payload(fields)
    log.debug("Publishing %s: %r", channel, payload)
    return handler(channel, payload, conf, session)


def listen(conf, channels=events.LISTENED_CHANNELS):
    """ Yield messages from the configured messaging backend.

    Notifications which cannot be decoded are logged and skipped.
    """
    try:
        handler = _messaging_backends[conf.messaging]["listen"]
    except KeyError:
        raise KeyError("No messaging backend found for %r" % conf.messaging)

    for channel, payload in handler(conf, channels):
        try:
            yield BaseMessage.from_notification(channel, payload)
        except IgnoreMessage as e:
            log.warning("Ignoring notification: %s", e)


def _pg_publish(channel, payload, conf, session):
    statement = text("SELECT pg_notify(:channel, :payload)")
    params = {"channel": channel, "payload": payload}
    if session is not None:
        session.execute(statement, params)
        return
    # Local import to avoid an import cycle with the models.
    from build_farm_service.models import make_session
    with make_session(conf) as own_session:
        own_session.execute(statement, params)


def _pg_connect_kwargs(conf):
    url = sqlalchemy.engine.make_url(conf.sqlalchemy_database_uri)
    if url.drivername.startswith("postgresql+"):
        url = url.set(drivername="postgresql")
    params = {
        "host": url.host,
        "port": url.port,
        "user": url.username,
        "dbname": url.database,
    }
    if url.password:
        params["password"] = url.password
    params.update(url.query or {})
    return {k: v for k, v in params.items() if v is not None}


def _pg_listen(conf, channels):
    conn = psycopg.connect(autocommit=True, **_pg_connect_kwargs(conf))
    try:
        with conn.cursor() as cur:
            for channel in channels:
                cur.execute("LISTEN %s" % channel)
        log.info("Listening on channels %s", ", ".join(channels))
        while True:
            for notify in conn.notifies(timeout=conf.notify_poll_interval or None):
                yield notify.channel, notify.payload
    finally:
        conn.close()


# Notifications published through the in_memory backend, waiting to be
# consumed by ``listen``.
_in_memory_queue = collections.deque()

_PENDING_KEY = "build_farm_service.pending_notifications"


def _in_memory_after_commit(session):
    _in_memory_queue.extend(session.info.pop(_PENDING_KEY, []))


def _in_memory_after_rollback(session):
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        log.debug("Dropping %d notifications of a rolled back transaction", len(dropped))


def _in_memory_publish(channel, payload, conf, session):
    if session is None:
        _in_memory_queue.append((channel, payload))
        return
    session.info.setdefault(_PENDING_KEY, []).append((channel, payload))
    if not event.contains(session, "after_commit", _in_memory_after_commit):
        event.listen(session, "after_commit", _in_memory_after_commit)
        event.listen(session, "after_rollback", _in_memory_after_rollback)


def _in_memory_listen(conf, channels):
    """ Drain the queued notifications of the subscribed channels, then stop. """
    while _in_memory_queue:
        channel, payload = _in_memory_queue.popleft()
        if channel in channels:
            yield channel, payload


_messaging_backends = {
    "pg": {
        "publish": _pg_publish,
        "listen": _pg_listen,
    },
    "in_memory": {
        "publish": _in_memory_publish,
        "listen": _in_memory_listen,
    },
}
