from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Armada battleship relay!'})


@main.route('/health')
def health():
    coordinator = current_app.extensions['armada']
    return jsonify({'status': 'ok', 'rooms': len(coordinator.store)})
