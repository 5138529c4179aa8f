from rest_framework import status

from devtinder.exceptions import DevTinderError


class SelfConnectionError(DevTinderError):
    default_message = "You cannot connect with yourself"


class AlreadyConnectedError(DevTinderError):
    default_message = "Already connected with this user"


class RequestAlreadyPendingError(DevTinderError):
    default_message = "Connection request already sent"


class RequestRejectedError(DevTinderError):
    default_message = "This user has declined your connection request"


class NoSuchRequestError(DevTinderError):
    default_message = "No connection request from this user"


class NotConnectedError(DevTinderError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not connected with this user"
