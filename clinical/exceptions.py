import logging

from django.db import DatabaseError
from rest_framework.exceptions import ValidationError
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response

from clinical.errors import ClinicalError, InternalError

logger = logging.getLogger(__name__)


def _error(code, message, status, details=None):
    body = {'ok': False, 'error': {'code': code, 'message': message}}
    if details:
        body['error']['details'] = details
    return Response(body, status=status)


def api_exception_handler(exc, context):
    if isinstance(exc, ClinicalError):
        if exc.status_code >= 500:
            logger.error("clinical failure: %s", exc.detail)
        return _error(exc.default_code, str(exc.detail), exc.status_code, exc.details)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        if isinstance(exc, DatabaseError):
            logger.exception("database error while handling %s", context.get('view'))
            return _error(InternalError.default_code, 'storage failure', InternalError.status_code)
        logger.exception("unhandled error while handling %s", context.get('view'))
        return _error(InternalError.default_code, str(InternalError.default_detail), InternalError.status_code)

    # serializer errors keep their per-field messages as details
    if isinstance(exc, ValidationError):
        return _error('validation_error', 'invalid input', resp.status_code, resp.data)
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    return _error(getattr(exc, 'default_code', 'api_error'), str(detail), resp.status_code)
