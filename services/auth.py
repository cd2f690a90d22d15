"""Access gateway: resolves a request to a verified caller identity."""
from __future__ import annotations

from functools import wraps
from typing import Mapping

from flask import g, jsonify, session


class AuthError(RuntimeError):
    """The credential did not yield a verified identity."""


def verify_caller(credential: Mapping) -> str:
    # the signed session cookie is issued elsewhere; only its identity is read here
    user_id = credential.get('user_id') if credential else None
    if not user_id:
        raise AuthError('unauthorized access')
    return str(user_id)


def caller_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        try:
            g.caller_id = verify_caller(session)
        except AuthError as exc:
            return jsonify({'error': 'unauthorized', 'message': str(exc)}), 401
        return view(*args, **kwargs)

    return wrapped
