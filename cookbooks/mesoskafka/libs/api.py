#!/usr/bin/env python3
"""Client for the Mesos Kafka framework broker management REST API."""
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests
from wmflib.requests import http_session

LOGGER = logging.getLogger(__name__)
DEFAULT_TIMEOUT_SECONDS = 10.0


class MesosKafkaError(Exception):
    """Parent exception for all mesos kafka related issues."""


class MesosKafkaTransportError(MesosKafkaError):
    """Risen when the API could not be reached or answered with a non 2xx status."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        """Init."""
        super().__init__(message)
        self.status = status
        self.body = body
        self.cause = cause


class MesosKafkaDecodeError(MesosKafkaError):
    """Risen when the API response does not have the expected format."""


class MesosKafkaAPI:
    """Thin JSON transport against the Mesos Kafka scheduler API.

    It does not retry anything, that's left to the callers.
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        """Init.

        Arguments:
            base_url: scheme, host and port of the scheduler API, ex. https://kafka-mesos.example.org:7000
            session: the requests session to use, if not passed a new one (single try) is created.

        """
        self.base_url = base_url
        if session is None:
            session = http_session(__name__, timeout=DEFAULT_TIMEOUT_SECONDS, tries=1)

        self._session = session

    @classmethod
    def from_host_port(cls, host: str, port: int, session: Optional[requests.Session] = None) -> "MesosKafkaAPI":
        """Get an api client for an https endpoint on the given host and port."""
        return cls(base_url=f"https://{host}:{port}", session=session)

    def get_full_url(self, path: str) -> str:
        """Resolve the given path (may include a query string) against the base url."""
        return urljoin(self.base_url, path)

    def _request(
        self, method: str, path: str, data: Optional[bytes] = None, headers: Optional[Dict[str, str]] = None
    ) -> bytes:
        url = self.get_full_url(path)
        LOGGER.debug("%s to: %s", method, url)
        try:
            response = self._session.request(method, url, data=data, headers=headers)
        except requests.exceptions.RequestException as error:
            raise MesosKafkaTransportError(f"{path}: {error}", cause=error) from error

        if not 200 <= response.status_code < 300:
            raise MesosKafkaTransportError(
                f"{path}: Returned HTTP status: {response.status_code} {response.reason}\n"
                f"Returned HTTP body: {response.text}",
                status=response.status_code,
                body=response.text,
            )

        return response.content

    def get_json(self, path: str) -> bytes:
        """Do a GET request, returning the raw response body."""
        return self._request("GET", path)

    def put_json(self, path: str, payload: bytes) -> bytes:
        """Do a PUT request with the given json payload, returning the raw response body."""
        return self._request("PUT", path, data=payload, headers={"Content-Type": "application/json"})

    def delete_json(self, path: str) -> bytes:
        """Do a DELETE request, returning the raw response body."""
        return self._request("DELETE", path)


def decode_json_object(body: bytes, path: str) -> Dict[str, Any]:
    """Load a json response body that is expected to be an object."""
    try:
        decoded = json.loads(body)
    except (ValueError, UnicodeDecodeError) as error:
        raise MesosKafkaDecodeError(f"{path}: unable to decode json response: {error}\nGot: {body!r}") from error

    if not isinstance(decoded, dict):
        raise MesosKafkaDecodeError(f"{path}: was expecting a json object, got: {decoded!r}")

    return decoded
