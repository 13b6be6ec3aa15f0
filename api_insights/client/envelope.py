"""
Response envelope codec.

The backend wraps payloads as ``{success, data, message?}``, paginated
payloads as ``{success, data, pagination}`` and errors as
``{success: false, error: {code, message, details?, request_id?}}``.
Bodies without a ``success`` key (the token refresh endpoint) are bare.
"""

from typing import Any, Dict, Optional


def normalize_envelope(body: Any) -> Any:
    """
    Unwrap a success envelope.

    Paginated envelopes become ``{"results": [...], "pagination": {...}}``,
    plain envelopes become their ``data``. Anything that is not an envelope
    is returned unchanged (the same object).
    """
    if not isinstance(body, dict) or 'success' not in body:
        return body

    if 'pagination' in body:
        results = body.get('data')
        return {
            'results': results if results is not None else [],
            'pagination': body['pagination'],
        }

    data = body.get('data')
    # An envelope without data (e.g. only a message) is surfaced whole
    return data if data is not None else body


def extract_error(body: Any) -> Dict[str, Optional[Any]]:
    """
    Pull ``code``, ``message``, ``details`` and ``request_id`` out of an
    error body, tolerating non-envelope shapes.
    """
    info: Dict[str, Optional[Any]] = {
        'code': None,
        'message': None,
        'details': None,
        'request_id': None,
    }

    if isinstance(body, dict):
        error = body.get('error')
        if isinstance(error, dict):
            info['code'] = error.get('code')
            info['message'] = error.get('message')
            info['details'] = error.get('details')
            info['request_id'] = error.get('request_id')
        elif isinstance(error, str):
            info['message'] = error

        if not info['message']:
            info['message'] = body.get('detail') or body.get('message')
    elif isinstance(body, str) and body.strip():
        info['message'] = body.strip()[:500]

    return info
