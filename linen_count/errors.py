from __future__ import annotations


class LinenCountError(Exception):
    """Base for failures returned to the caller as a tagged result.

    Every subclass leaves stored state untouched: services raise before
    writing or inside a savepoint that is rolled back.
    """

    code = 'Error'
    status_code = 400
    default_detail = 'Request failed'

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_payload(self) -> dict:
        return {'ok': False, 'error': self.code, 'detail': self.detail}


class InvalidInput(LinenCountError):
    code = 'InvalidInput'
    status_code = 400
    default_detail = 'Invalid parameters'


class Forbidden(LinenCountError):
    code = 'Forbidden'
    status_code = 403
    default_detail = 'Permission denied'


class Locked(LinenCountError):
    code = 'Locked'
    status_code = 409
    default_detail = 'Count already submitted and locked. You do not have permission to edit.'


class ModuleDisabled(LinenCountError):
    code = 'ModuleDisabled'
    status_code = 409
    default_detail = 'Module not enabled for this location'


class StorageFailure(LinenCountError):
    code = 'StorageFailure'
    status_code = 503
    default_detail = 'Database error'
