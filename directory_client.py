"""
HTTP clients for the UW Groups Web Service (GWS) and Person Web Service (PWS).

Both fail soft: a transport error or non-success response is logged and the
caller gets an empty result instead of an exception.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from config import SyncConfig


logger = logging.getLogger(__name__)


class WebServiceClient:
    """A JSON web service reached through a single requests session."""

    service_name = "WS"
    results_key = "data"

    def __init__(self, host: str, cert_file: Optional[str] = None, key_file: Optional[str] = None,
                 ca_cert_file: Optional[str] = None, timeout: float = 30.0):
        self.host = host.rstrip("/")
        self.cert_file = cert_file
        self.key_file = key_file
        self.ca_cert_file = ca_cert_file
        self.timeout = timeout
        self.session: Optional[requests.Session] = None

    @classmethod
    def from_config(cls, config: SyncConfig, host: str):
        return cls(
            host,
            cert_file=config.ws_cert_file,
            key_file=config.ws_key_file,
            ca_cert_file=config.ws_ca_cert_file,
            timeout=config.ws_timeout,
        )

    def connect(self) -> requests.Session:
        """Set up the HTTP session, with a client certificate if one is configured."""
        logger.info(f"Connecting to {self.service_name}: {self.host}")
        session = requests.Session()
        session.headers.update({"Accept": "application/json"})

        if self.cert_file:
            session.cert = (self.cert_file, self.key_file) if self.key_file else self.cert_file

        # Configure certificate verification if a CA bundle is provided
        if self.ca_cert_file and os.path.exists(self.ca_cert_file):
            logger.info(f"Using custom CA certificate: {self.ca_cert_file}")
            session.verify = self.ca_cert_file
        elif self.ca_cert_file:
            logger.warning(f"CA certificate file not found: {self.ca_cert_file}")

        self.session = session
        return session

    def close(self):
        if self.session:
            self.session.close()
            self.session = None
            logger.debug(f"Closed {self.service_name} session")

    def url_for(self, path: str) -> str:
        return '/'.join((self.host, path.lstrip('/')))

    def get_json(self, path: str) -> Optional[Any]:
        """GET a path and decode the JSON body, or return None on any failure."""
        session = self.session or self.connect()
        url = self.url_for(path)
        try:
            response = session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"{self.service_name} request {path} failed: {e}")
            return None

        if not response.ok:
            self.log_failure(path, response)
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{self.service_name} response for {path} is not JSON: {e}")
            return None

    def log_failure(self, path: str, response: requests.Response):
        logger.error(f"{self.service_name} search {path} failed: {response.status_code} {response.reason}")

    def search(self, path: str) -> List[Dict[str, Any]]:
        """Run a search and return the list of result objects."""
        content = self.get_json(path)
        if not isinstance(content, dict):
            return []
        results = content.get(self.results_key) or []
        if not isinstance(results, list):
            logger.error(f"{self.service_name} search {path} returned an unexpected '{self.results_key}' value")
            return []
        logger.debug(f"search found {len(results)} objects")
        return results


class GroupsWebService(WebServiceClient):
    service_name = "GWS"
    results_key = "data"

    @classmethod
    def from_config(cls, config: SyncConfig):
        return super().from_config(config, config.gws_host)

    def effective_members(self, group_id: str) -> List[Dict[str, Any]]:
        return self.search(f"group/{group_id}/effective_member")


class PersonWebService(WebServiceClient):
    service_name = "PWS"
    results_key = "Persons"

    @classmethod
    def from_config(cls, config: SyncConfig):
        return super().from_config(config, config.pws_host)

    def log_failure(self, path: str, response: requests.Response):
        # A missing person is routine, not an outage
        logger.warning(f"{self.service_name} search {path} failed: {response.status_code} {response.reason}")

    def lookup(self, subject_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the full person record for a subject id."""
        content = self.get_json(f"person/{subject_id}/full.json")
        if not isinstance(content, dict):
            return None
        return content
