from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError
from extensions import db

main_bp = Blueprint('main', __name__)

@main_bp.route('/health')
def health():
    """Liveness check. Reports 503 when the database cannot be reached."""
    try:
        db.session.execute(db.text('SELECT 1'))
    except SQLAlchemyError:
        db.session.rollback()
        return jsonify({'status': 'degraded', 'database': 'unreachable'}), 503
    return jsonify({'status': 'ok', 'database': 'ok'})
