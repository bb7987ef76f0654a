#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import json

from aiogoogle import Aiogoogle, HTTPError
from aiogoogle.auth.creds import ServiceAccountCreds

from dust_connectors.exceptions import PermanentRemoteError, cast_known_errors
from dust_connectors.logger import logger
from dust_connectors.utils import RetryStrategy, retryable

RETRIES = 3
RETRY_INTERVAL = 2
DEFAULT_TIMEOUT = 1 * 60  # 1 min


def load_service_account_json(service_account_credentials):
    """Parses the service account credentials a connector was configured with."""
    if isinstance(service_account_credentials, dict):
        return dict(service_account_credentials)
    try:
        return json.loads(service_account_credentials)
    except ValueError as e:
        msg = "Google Drive service account is not a valid JSON"
        raise ValueError(msg) from e


def remove_universe_domain(json_credentials):
    if "universe_domain" in json_credentials:
        json_credentials.pop("universe_domain")


class GoogleServiceAccountClient:
    """A Google client to handle api calls made to the Google Workspace APIs using a service account."""

    def __init__(self, json_credentials, api, api_version, scopes, api_timeout):
        """Initialize the ServiceAccountCreds class using which api calls will be made.
        Args:
            json_credentials (dict): Service account credentials json.
        """
        self.service_account_credentials = ServiceAccountCreds(
            scopes=scopes,
            **json_credentials,
        )
        self.api = api
        self.api_version = api_version
        self.api_timeout = api_timeout
        self._logger = logger

    def set_logger(self, logger_):
        self._logger = logger_

    @retryable(
        retries=RETRIES,
        interval=RETRY_INTERVAL,
        strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
        skipped_exceptions=[PermanentRemoteError, AttributeError],
    )
    async def api_call(self, resource, method, full_res=False, **kwargs):
        """Make a single call to a Google Workspace API.

        Raw `HTTPError`s are translated to the remote errors taxonomy, only
        transient ones are retried.

        Args:
            resource (str or list): Resource name (or path of nested resources) for which the API call will be made.
            method (str): Method available for the resource.
            full_res (bool): Return the aiogoogle `Response` instead of its content.
        Raises:
            RemoteApiError: An instance of the remote errors taxonomy.
        Returns:
            dict: Response returned by the resource method.
        """
        try:
            async with Aiogoogle(
                service_account_creds=self.service_account_credentials
            ) as google_client:
                workspace_client = await google_client.discover(
                    api_name=self.api, api_version=self.api_version
                )

                if isinstance(resource, list):
                    resource_object = getattr(workspace_client, resource[0])
                    for nested_resource in resource[1:]:
                        resource_object = getattr(resource_object, nested_resource)
                else:
                    resource_object = getattr(workspace_client, resource)
                method_object = getattr(resource_object, method)

                return await google_client.as_service_account(
                    method_object(**kwargs),
                    full_res=full_res,
                    timeout=self.api_timeout,
                )
        except AttributeError as exception:
            self._logger.error(
                f"Error occurred while generating the resource/method object for an API call. Error: {exception}"
            )
            raise
        except HTTPError as exception:
            status_code = getattr(exception.res, "status_code", None)
            self._logger.warning(
                f"Response code: {status_code} Exception: {exception}."
            )
            raise cast_known_errors(exception) from exception
