# Overview: Turns gateway Results and service errors into JSON responses.

from flask import jsonify

from .errors import HTTP_STATUS_BY_KIND, LendingError


def error_response(kind: str, message: str):
    return jsonify({"error": kind, "message": message}), HTTP_STATUS_BY_KIND.get(kind, 400)


def lending_error_response(exc: LendingError):
    return error_response(exc.kind, exc.message)


def result_response(result, key: str, *, status: int = 200):
    """
    Ok -> {key: value.to_dict()} with status; Err -> mapped error body.

    Plain dict values are returned as-is under key.
    """
    if not result.ok:
        return error_response(result.error_kind, result.message)
    value = result.value
    body = value.to_dict() if hasattr(value, "to_dict") else value
    return jsonify({key: body}), status
