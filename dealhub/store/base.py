"""Connection scopes shared by the stores."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from dealhub.errors import ConflictError, StoreUnavailableError


@contextmanager
def read_scope(engine: Engine) -> Iterator[Connection]:
    with _translated():
        with engine.connect() as conn:
            yield conn


@contextmanager
def write_scope(engine: Engine) -> Iterator[Connection]:
    """Provide a transactional connection; commits on success."""
    with _translated():
        with engine.begin() as conn:
            yield conn


@contextmanager
def _translated() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(str(exc.orig)) from exc
    except OperationalError as exc:
        raise StoreUnavailableError(str(exc.orig)) from exc


def row_dicts(result) -> list[dict[str, object]]:
    return [dict(row) for row in result.mappings()]
