class CommonError(Exception):
    """Base exception for common app errors"""

    default_message = ""

    def __init__(self, message: str | None = None):
        if message is None:
            message = self.default_message
        super().__init__(message)


class OrganizationRequiredError(CommonError):
    default_message = "`organization` is required to create an instance."
