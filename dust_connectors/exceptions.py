#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Common exceptions for the dust_connectors package.

Remote failures are sorted in a small taxonomy so that callers can decide
what to do without looking at raw HTTP statuses:

- `TransientRemoteError`: rate limits, 5xx, network issues. Retried.
- `ExternalOauthTokenError`: the connector lost its authorization. Marks the
  connector as failed, never retried.
- `RemoteNotFoundError`: the object does not exist or is not visible anymore.
- `PermanentRemoteError`: any other 4xx.
- `InvalidRemoteObjectError`: the remote returned an object breaking a data
  invariant (e.g. a file without a name).
"""


class DataSourceError(Exception):
    """An exception raised by a data source when something goes wrong."""

    pass


class RemoteApiError(DataSourceError):
    type = "remote_api_error"

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteApiError):
    type = "transient_error"


class InternalRemoteError(TransientRemoteError):
    type = "internal_error"


class RateLimitError(TransientRemoteError):
    type = "rate_limit_error"


class NetworkError(TransientRemoteError):
    type = "network_error"


class NetworkTimeoutError(TransientRemoteError):
    type = "network_timeout_error"


class PermanentRemoteError(RemoteApiError):
    type = "permanent_error"


class RemoteNotFoundError(PermanentRemoteError):
    type = "not_found"


class ExternalOauthTokenError(PermanentRemoteError):
    type = "oauth_token_revoked"


class InvalidRemoteObjectError(DataSourceError):
    pass


class ConnectorNotFoundError(DataSourceError):
    pass


class PartialResyncNotSupportedError(DataSourceError):
    pass


PERMISSION_DENIED_MESSAGE = "The caller does not have permission"


def _error_message(res):
    body = getattr(res, "json", None)
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message", "")
        if isinstance(error, str):
            return error
    return ""


def cast_known_errors(exception):
    """Maps a raw `aiogoogle.HTTPError` to the remote errors taxonomy.

    `invalid_grant` responses of the token endpoint and 401s mean the
    credentials are gone, 403 with a permission message means the drive is
    not accessible anymore.
    """
    res = getattr(exception, "res", None)
    status_code = getattr(res, "status_code", None)
    if not isinstance(status_code, int):
        status_code = None
    message = _error_message(res) if res is not None else ""
    text = f"{exception}"

    if "invalid_grant" in text or status_code == 401:
        return ExternalOauthTokenError(text, status_code)
    if status_code == 403 and PERMISSION_DENIED_MESSAGE in f"{message} {text}":
        return ExternalOauthTokenError(text, status_code)
    if status_code == 404:
        return RemoteNotFoundError(text, status_code)
    if status_code == 429 or (status_code == 403 and "rate limit" in message.lower()):
        return RateLimitError(text, status_code)
    if status_code == 502:
        return NetworkError(text, status_code)
    if status_code == 504:
        return NetworkTimeoutError(text, status_code)
    if status_code is not None and status_code >= 500:
        return InternalRemoteError(text, status_code)
    if status_code is None:
        return NetworkError(text, status_code)
    return PermanentRemoteError(text, status_code)


def is_authorization_error(exception):
    if isinstance(exception, ExternalOauthTokenError):
        return True
    return PERMISSION_DENIED_MESSAGE in f"{exception}"
