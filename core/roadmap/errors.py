from __future__ import annotations


class RoadmapError(Exception):
    code = "roadmap_error"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        if code:
            self.code = code
        super().__init__(message or self.code)


class InputValidationError(RoadmapError, ValueError):
    code = "invalid_input"


class AuthorizationError(RoadmapError):
    code = "forbidden"


class ShareLinkNotFoundError(AuthorizationError):
    code = "share_not_found"


class ShareLinkExpiredError(AuthorizationError):
    code = "share_expired"


class EntityNotFoundError(RoadmapError):
    code = "not_found"


class ConflictError(RoadmapError):
    code = "conflict"


class StoreStateError(RoadmapError):
    code = "store_state"


class GatewayError(RoadmapError):
    code = "gateway_error"

    def __init__(self, message: str = "", *, code: str | None = None, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, code=code)


_BY_STATUS = {
    400: InputValidationError,
    401: AuthorizationError,
    403: AuthorizationError,
    404: EntityNotFoundError,
    409: ConflictError,
    422: InputValidationError,
}


def error_from_status(status_code: int, detail: str) -> RoadmapError:
    """Rebuild the domain error an HTTP response stands for."""
    text = str(detail or "").strip()
    code = text.split(":", 1)[0] if text else ""
    if code == ShareLinkNotFoundError.code:
        return ShareLinkNotFoundError(text)
    if code == ShareLinkExpiredError.code or status_code == 410:
        return ShareLinkExpiredError(text or ShareLinkExpiredError.code)
    error_cls = _BY_STATUS.get(status_code)
    if error_cls is None:
        return GatewayError(text or f"http_{status_code}", code=code or None, status_code=status_code)
    return error_cls(text, code=code or None)
