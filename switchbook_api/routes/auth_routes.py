"""
Account routes: registration, login and logout.
"""

import logging

from flask import Blueprint, jsonify
from sqlalchemy import func, or_

from ..auth import current_user, login_required, login_user, logout_user
from ..database import db
from ..errors import ApiError, Conflict, Unauthorized
from ..models import User
from ..validation import LOGIN_SCHEMA, REGISTER_SCHEMA, validate_payload
from .utils import get_json_body, server_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

@auth_bp.route('/auth/register', methods=['POST'])
def register():
    """Create an account and start a session for it."""
    try:
        data = validate_payload(get_json_body(), REGISTER_SCHEMA)
        email = data['email'].strip().lower()
        username = data['username'].strip()

        taken = User.query.filter(or_(func.lower(User.email) == email,
                                      func.lower(User.username) == username.lower())).first()
        if taken:
            raise Conflict('An account with this email or username already exists')

        user = User(email=email, username=username)
        user.set_password(data['password'])
        db.session.add(user)
        db.session.commit()
        login_user(user)
        logger.info(f"User {user.id} registered")

        return jsonify({'user': user.to_dict()}), 201

    except ApiError:
        raise
    except Exception as e:
        return server_error('register', e, 'An error occurred while creating the account')

@auth_bp.route('/auth/login', methods=['POST'])
def login():
    try:
        data = validate_payload(get_json_body(), LOGIN_SCHEMA)
        user = User.query.filter(func.lower(User.email) == data['email'].strip().lower()).first()
        if user is None or not user.check_password(data['password']):
            raise Unauthorized('Invalid email or password')

        login_user(user)
        return jsonify({'user': user.to_dict()})

    except ApiError:
        raise
    except Exception as e:
        return server_error('login', e, 'An error occurred while logging in')

@auth_bp.route('/auth/logout', methods=['POST'])
def logout():
    logout_user()
    return jsonify({'success': True})

@auth_bp.route('/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': current_user().to_dict()})
