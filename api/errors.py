from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import HTTPException

from core.roadmap.errors import (
    AuthorizationError,
    ConflictError,
    EntityNotFoundError,
    GatewayError,
    InputValidationError,
    RoadmapError,
    ShareLinkExpiredError,
    ShareLinkNotFoundError,
)

logger = logging.getLogger(__name__)

# Most specific first.
_STATUS_BY_ERROR: list[tuple[type[RoadmapError], int]] = [
    (ShareLinkExpiredError, 410),
    (ShareLinkNotFoundError, 404),
    (AuthorizationError, 403),
    (EntityNotFoundError, 404),
    (ConflictError, 409),
    (InputValidationError, 400),
    (GatewayError, 502),
]


def to_http_exception(exc: RoadmapError) -> HTTPException:
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    return HTTPException(status_code=status_code, detail=str(exc) or exc.code)


def run_in_session(session_factory, fn: Callable[..., Any], **kwargs: Any) -> Any:
    session = session_factory()
    try:
        result = fn(session, **kwargs)
        session.commit()
        return result
    except RoadmapError as exc:
        session.rollback()
        raise to_http_exception(exc) from exc
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        logger.exception("unhandled error in %s", getattr(fn, "__name__", fn))
        raise HTTPException(status_code=500, detail=str(exc))
    finally:
        session.close()
