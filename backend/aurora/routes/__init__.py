from flask import current_app, jsonify

from ..extensions import db


def internal_error(message: str):
    """Log the active exception, discard the session and answer 500."""
    current_app.logger.exception(message)
    db.session.rollback()
    return jsonify({"error": "Internal server error"}), 500


def not_found(what: str):
    return jsonify({"error": f"{what} not found"}), 404


def forbidden():
    return jsonify({"error": "Permission denied"}), 403
