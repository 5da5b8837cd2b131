from __future__ import annotations


INVALID_DUTY = "InvalidDuty"


class CrewSyncError(Exception):
    pass


class NormalizationError(CrewSyncError):
    def __init__(self, message: str, kind: str = INVALID_DUTY) -> None:
        super().__init__(message)
        self.kind = kind


class CredentialFailure(CrewSyncError):
    pass


class RemoteCallError(CrewSyncError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def gone(self) -> bool:
        return self.status_code in {404, 410}


class RemoteListingFailure(CrewSyncError):
    pass


class ConfigError(CrewSyncError, ValueError):
    pass
