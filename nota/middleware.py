"""Request context: who is acting on this request."""
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import session, g, request, jsonify

ACTOR_HEADER = 'X-Actor-Id'


@dataclass(frozen=True)
class SessionContext:
    """Explicit per-request identity handed to services as ``actor_id``."""
    actor_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.actor_id)


def load_session_context():
    """
    Populate g.context before each request.

    The logged-in user id in the Flask session wins; API clients without a
    browser session may send the X-Actor-Id header instead.
    """
    actor_id = session.get('user_id') or request.headers.get(ACTOR_HEADER, '').strip() or None
    g.context = SessionContext(actor_id=str(actor_id) if actor_id else None)


def current_context() -> SessionContext:
    return g.get('context') or SessionContext()


def require_actor(f):
    """Decorator: reject the request with 401 JSON when no actor is known."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_context().is_authenticated:
            return jsonify({
                'status': 'error',
                'message': 'Silakan login terlebih dahulu',
                'error': 'Unauthorized'
            }), 401
        return f(*args, **kwargs)
    return decorated_function
