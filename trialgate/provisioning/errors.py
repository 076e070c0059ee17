class ProvisioningError(Exception):
    pass


class ExternalProvisioningFailedError(ProvisioningError):
    def __init__(self, action: str, detail: str) -> None:
        super().__init__(f"{action}: {detail}")
        self.action = action
        self.detail = detail
        self.operation_id: int | None = None


class ProvisioningNotConfiguredError(ProvisioningError):
    pass
