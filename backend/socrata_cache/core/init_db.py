from pathlib import Path

from .db import Base, engine
from ..models import dataset  # noqa: F401


def init_db():
    # Import all models so SQLAlchemy knows them
    database = engine.url.database
    if engine.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)
