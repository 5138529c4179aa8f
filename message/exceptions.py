from devtinder.exceptions import DevTinderError


class EmptyContentError(DevTinderError):
    default_message = "Message cannot be empty"


class InvalidPaginationError(DevTinderError):
    default_message = "page and limit must be positive integers"
