# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
import os

import pytest
from mock import MagicMock
from sqlalchemy.orm import sessionmaker

from build_farm_service import messaging
from build_farm_service.config import init_config
from build_farm_service.models import Base, get_engine

base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture
def conf(monkeypatch):
    monkeypatch.setenv("BFS_CONFIG_FILE", os.path.join(base_dir, "conf", "config.py"))
    monkeypatch.setenv("BFS_CONFIG_SECTION", "TestConfiguration")
    monkeypatch.delenv("BFS_EVALUATOR_DRY_RUN", raising=False)
    monkeypatch.delenv("BFS_EVALUATOR_DEBUG", raising=False)
    return init_config()


@pytest.fixture
def db_session(conf):
    engine = get_engine(conf)
    Base.metadata.create_all(engine)
    messaging._in_memory_queue.clear()
    session = sessionmaker(bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        messaging._in_memory_queue.clear()


@pytest.fixture
def store():
    """ A content store in which every path is available. """
    content_store = MagicMock()
    content_store.ensure_path.return_value = True
    content_store.is_valid_path.return_value = True
    return content_store
