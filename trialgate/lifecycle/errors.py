class LifecycleError(Exception):
    pass


class AccountNotFoundError(LifecycleError):
    pass


class ConcurrentOperationInProgressError(LifecycleError):
    def __init__(self, lock_key: str) -> None:
        super().__init__(lock_key)
        self.lock_key = lock_key


class HistoryRecordFailedError(LifecycleError):
    pass


class InvalidTransitionError(LifecycleError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class AdminGrantDeniedError(LifecycleError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
