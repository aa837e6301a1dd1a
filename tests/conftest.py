import os
import tempfile

os.environ.setdefault("CASHBACK_DATA_DIR", tempfile.mkdtemp(prefix="cashback-test-"))
os.environ.setdefault("CASHBACK_SCHEDULER_ENABLED", "0")

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from database import Base, build_engine  # noqa: E402
import models  # noqa: E402,F401


@pytest.fixture()
def engine():
    eng = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session
