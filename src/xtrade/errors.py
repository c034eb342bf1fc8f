from __future__ import annotations


class XTradeError(RuntimeError):
    kind = "error"
    status_code = 500
    exit_code = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "kind": self.kind}


class ValidationError(XTradeError):
    kind = "validation"
    status_code = 400
    exit_code = 2


class NotFoundError(XTradeError):
    kind = "not_found"
    status_code = 404
    exit_code = 3


class ConflictError(XTradeError):
    kind = "conflict"
    status_code = 409
    exit_code = 4


class PersistenceError(XTradeError):
    kind = "persistence"
    status_code = 500
    exit_code = 5


class LockTimeoutError(XTradeError):
    kind = "timeout"
    status_code = 503
    exit_code = 6


class RemoteError(XTradeError):
    """The server could not be reached or answered with something unexpected."""

    kind = "remote"
    status_code = 502
    exit_code = 1


_BY_KIND: dict[str, type[XTradeError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        NotFoundError,
        ConflictError,
        PersistenceError,
        LockTimeoutError,
        RemoteError,
    )
}

_BY_STATUS: dict[int, type[XTradeError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
    500: PersistenceError,
    503: LockTimeoutError,
}


def error_from_kind(kind: str, message: str) -> XTradeError:
    return _BY_KIND.get(kind, XTradeError)(message)


def error_from_status(status_code: int, message: str) -> XTradeError:
    cls = _BY_STATUS.get(status_code)
    if cls is None:
        return RemoteError(f"unexpected status {status_code}: {message}")
    return cls(message)
