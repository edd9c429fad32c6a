from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings
from .errors import RideError, StoreError


def _engine_kwargs(url: str) -> dict:
    timeout = max(0.1, float(settings.DB_TIMEOUT_SECS))
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            # One shared connection so every session sees the same in-memory database
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "pool_pre_ping": True,
        "connect_args": {"options": f"-c statement_timeout={int(timeout * 1000)}"},
    }


def make_engine(url: str):
    return create_engine(url, future=True, **_engine_kwargs(url))


engine = make_engine(settings.DB_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """Run a block as one unit of work.

    The outermost block commits; any failure rolls everything back.
    Driver-level failures surface as ``StoreError``.
    """
    depth = db.info.get("atomic_depth", 0)
    db.info["atomic_depth"] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except RideError:
        if depth == 0:
            db.rollback()
        raise
    except SQLAlchemyError as exc:
        if depth == 0:
            db.rollback()
        raise StoreError(f"store unavailable: {exc.__class__.__name__}") from exc
    except Exception:
        if depth == 0:
            db.rollback()
        raise
    finally:
        db.info["atomic_depth"] = depth
