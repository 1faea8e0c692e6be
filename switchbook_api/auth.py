"""
Session authentication helpers and role decorators.
"""

from functools import wraps
from typing import Optional

from flask import g, session

from .database import db
from .errors import Unauthorized
from .models import User

def current_user() -> Optional[User]:
    """The logged-in user for this request, loaded once from the session."""
    if 'current_user' not in g:
        user_id = session.get('user_id')
        g.current_user = db.session.get(User, user_id) if user_id else None
    return g.current_user

def login_user(user: User):
    session.clear()
    session['user_id'] = user.id
    session['user_role'] = user.role
    g.current_user = user

def logout_user():
    session.clear()
    g.current_user = None

def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user() is None:
            raise Unauthorized('Authentication required')
        return f(*args, **kwargs)
    return decorated_function

def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if user is None or not user.is_admin:
            raise Unauthorized('Admin access required')
        return f(*args, **kwargs)
    return decorated_function
