"""Error taxonomy for room commands.

Every validation failure is raised as a ``CoordinatorError`` subclass and
turned into an acknowledgment payload for the calling client only.
"""


class CoordinatorError(Exception):
    code = 'InternalError'
    message = 'Internal error'

    def __init__(self, message=None):
        if message:
            self.message = message
        super().__init__(self.message)

    def to_ack(self):
        return {'error': self.message, 'code': self.code}


class InvalidRoomCode(CoordinatorError):
    code = 'InvalidRoomCode'
    message = 'Invalid room code'


class RoomNotFound(CoordinatorError):
    code = 'RoomNotFound'
    message = 'Room not found'


class RoomFull(CoordinatorError):
    code = 'RoomFull'
    message = 'Room is full'


class AlreadyInRoom(CoordinatorError):
    code = 'AlreadyInRoom'
    message = 'You are already in this room'


class NotYourTurn(CoordinatorError):
    code = 'NotYourTurn'
    message = 'It is not your turn'


class NoOpponent(CoordinatorError):
    code = 'NoOpponent'
    message = 'Waiting for an opponent'


class InvalidCoordinates(CoordinatorError):
    code = 'InvalidCoordinates'
    message = 'Invalid coordinates'


class NotInRoom(CoordinatorError):
    code = 'NotInRoom'
    message = 'You are not in this room'


class UnknownAttacker(CoordinatorError):
    code = 'UnknownAttacker'
    message = 'Unknown attacker'


class RateLimited(CoordinatorError):
    code = 'RateLimited'
    message = 'Too many shots, wait a moment'


class InvalidState(CoordinatorError):
    code = 'InvalidState'
    message = 'Command not allowed right now'


class InternalError(CoordinatorError):
    pass
