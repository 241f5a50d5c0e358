# Overview: Request and role decorators for API routes.

from dataclasses import replace
from functools import wraps
from flask import request, jsonify, g, current_app

from .services.identity_service import context_from_headers


def _is_identified() -> bool:
    return hasattr(g, "session_context") and g.session_context is not None


def require_identity(f):
    """
    Require the identity headers set by the upstream gateway.

    Sets g.session_context (SessionContext). The terminal id in the URL, when
    present, wins over the X-Terminal-Id header.

    SECURITY: Returns 401 when X-Employee-Id or X-Employee-Role is missing.
    Nothing here verifies the headers; the gateway in front of the engine does.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        context = context_from_headers(request.headers)
        if context is None:
            return jsonify({"error": "Identity required"}), 401

        terminal_id = kwargs.get("terminal_id")
        if terminal_id and terminal_id != context.terminal_id:
            context = replace(context, terminal_id=terminal_id)

        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the identified employee to hold one of roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_identified():
                return jsonify({"error": "Identity required"}), 401

            role = g.session_context.role
            if role not in roles:
                current_app.logger.warning(
                    "Role %s denied on %s %s", role, request.method, request.path
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(roles),
                    "message": f"Requires one of: {', '.join(sorted(roles))}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
