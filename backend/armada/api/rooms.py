from flask import Blueprint, current_app, jsonify

from armada.errors import InvalidRoomCode, RoomNotFound

rooms = Blueprint('rooms', __name__)


@rooms.route('/<string:room_code>', methods=['GET'])
def get_room_state(room_code):
    """
    Returns the public summary of a room. Boards are never exposed here.
    """
    try:
        summary = current_app.extensions['armada'].room_summary(room_code)
    except InvalidRoomCode as exc:
        return jsonify({'error': exc.message}), 400
    except RoomNotFound as exc:
        return jsonify({'error': exc.message}), 404
    return jsonify(summary), 200
