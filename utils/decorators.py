from functools import wraps
from flask import jsonify
from flask_login import current_user

def admin_required(f):
    """
    Decorator restricting a view to administrators.

    Must be stacked under @login_required, which answers unauthenticated callers first.
    Non-admin callers get a 403 JSON error.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_admin:
            return jsonify({'success': False, 'error': 'forbidden',
                            'message': 'Administrator access is required.'}), 403
        return f(*args, **kwargs)
    return decorated_function
