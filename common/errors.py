class MissingFieldsError(ValueError):
    """Raised when a request lacks a field the operation can't do without."""

    def __init__(self, *fields: str):
        self.fields = fields
        super().__init__("Missing required fields")


class NotFoundError(LookupError):
    pass
