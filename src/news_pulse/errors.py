"""Exceptions shared across the store, services and API."""


class NewsPulseError(Exception):
    pass


class NotFoundError(NewsPulseError):
    """A user or article id did not resolve."""

    kind = "resource"

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"{self.kind.capitalize()} not found: {resource_id}")


class UserNotFoundError(NotFoundError):
    kind = "user"


class ArticleNotFoundError(NotFoundError):
    kind = "article"


class StorageError(NewsPulseError):
    """The backing store failed to read or write."""
