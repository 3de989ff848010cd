class RoomError(Exception):
    """Base for errors reported back to the caller of a room operation."""

    status_code = 400
    code = 'room_error'

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class NotFound(RoomError):
    """Room or entity missing, or the room was collected for inactivity."""

    status_code = 404
    code = 'not_found'


class Unauthorized(RoomError):
    """Caller is not a member of the room."""

    status_code = 403
    code = 'unauthorized'


class InvalidArgument(RoomError):
    status_code = 400
    code = 'invalid_argument'


class Conflict(RoomError):
    """A mutation would break a monotonic invariant.

    Raised by store primitives; the gateway answers it with the current
    state instead of passing it on, except for lobby joins.
    """

    status_code = 409
    code = 'conflict'
