from collections.abc import Generator, Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import Settings

Base = declarative_base()

_SESSION_FACTORIES: dict[str, sessionmaker[Session]] = {}


def _ensure_sqlite_path(url: str) -> None:
    if not url.startswith("sqlite"):
        return

    parsed = make_url(url)
    database = parsed.database
    if not database or database == ":memory:":
        return

    path = Path(database)
    path.parent.mkdir(parents=True, exist_ok=True)


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {
        "echo": echo,
        "future": True,
        "pool_pre_ping": True,
    }

    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if not parsed.database or parsed.database == ":memory:":
            # One shared connection, otherwise every checkout sees an empty database.
            engine_kwargs["poolclass"] = StaticPool
        else:
            _ensure_sqlite_path(url)
    else:
        # Recycle long-lived connections so pooler idle timeouts do not kill them mid-sync.
        engine_kwargs["pool_recycle"] = 300

    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    return create_engine(url, **engine_kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Autoflush lets repeated upserts in one transaction find pending rows via Session.get.
    return sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)


def init_db(engine: Engine) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def session_factory_for(settings: Settings) -> sessionmaker[Session]:
    """Return the process-wide session factory for ``settings.database_url``."""

    factory = _SESSION_FACTORIES.get(settings.database_url)
    if factory is None:
        engine = create_db_engine(settings.database_url, echo=settings.debug)
        init_db(engine)
        factory = create_session_factory(engine)
        _SESSION_FACTORIES[settings.database_url] = factory
    return factory


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def iter_session(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = factory()
    try:
        yield session
    finally:
        session.close()
