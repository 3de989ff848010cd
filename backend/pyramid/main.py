from flask import Blueprint, jsonify
from flask_login import current_user

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Pyramid room server!'})


@main.route('/whoami')
def whoami():
    if not current_user.is_authenticated:
        return jsonify({'user_id': None})
    return jsonify({'user_id': current_user.get_id()})
