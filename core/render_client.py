# core/render_client.py
"""
HTTP client for the Grafana image renderer

A single GET per render, no retries. The response body is returned as raw
bytes; what they are (PNG or PDF) follows from the job's format.
"""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from core.exceptions import ConfigurationError, RenderError
from core.models import ConnectionConfig, Job

logger = logging.getLogger(__name__)

RENDER_TIMEOUT = 60.0
DASHBOARD_LIST_TIMEOUT = 30.0
MAX_ERROR_BODY = 2048


def _q(value: Any) -> str:
    return quote(str(value), safe='')


class RenderClient:
    """Builds render URLs and fetches rendered dashboards"""

    def __init__(self,
                 timeout: float = RENDER_TIMEOUT,
                 list_timeout: float = DASHBOARD_LIST_TIMEOUT,
                 transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout
        self.list_timeout = list_timeout
        self.transport = transport

    @staticmethod
    def build_render_url(base_url: str, job: Job) -> str:
        """
        Render URL for a job.

        Panel jobs use the d-solo endpoint with a panelId parameter; full
        dashboards use the d endpoint in kiosk mode. Every variable value
        adds one var-<name>=<value> parameter.
        """
        base = base_url.rstrip('/')
        uid, slug = _q(job.dashboard.uid), _q(job.dashboard.slug)
        common = (f"from={_q(job.time_range.from_)}&to={_q(job.time_range.to)}"
                  f"&width={job.render_options.width}&height={job.render_options.height}"
                  f"&scale={job.render_options.scale}")

        if job.is_panel:
            url = f"{base}/render/d-solo/{uid}/{slug}?panelId={job.panel_id}&{common}&tz=UTC"
        else:
            url = f"{base}/render/d/{uid}/{slug}?{common}&kiosk&tz=UTC"

        for name, values in job.variables.items():
            for value in values:
                url += f"&var-{_q(name)}={_q(value)}"
        return url

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self.transport)

    @staticmethod
    def _auth_headers(connection: ConnectionConfig) -> dict:
        if connection.grafana_api_key:
            return {'Authorization': f"Bearer {connection.grafana_api_key}"}
        return {}

    def render(self, job: Job, connection: ConnectionConfig) -> bytes:
        """
        Fetch the rendered artifact for a job

        Raises:
            ConfigurationError: if no Grafana URL is configured
            RenderError: on a non-200 response or a transport failure
        """
        if not connection.grafana_url:
            raise ConfigurationError("Grafana URL not configured")

        url = self.build_render_url(connection.grafana_url, job)
        logger.info(f"Rendering {'panel ' + str(job.panel_id) if job.is_panel else 'dashboard'} "
                    f"{job.dashboard.uid} for job {job.id}")

        try:
            with self._client(self.timeout) as client:
                response = client.get(url, headers=self._auth_headers(connection))
        except httpx.HTTPError as e:
            raise RenderError(f"failed to fetch render: {e}") from e

        if response.status_code != 200:
            body = response.text[:MAX_ERROR_BODY]
            raise RenderError(f"render failed with status {response.status_code}: {body}",
                              status_code=response.status_code, body=body)

        logger.debug(f"Rendered {len(response.content)} bytes for job {job.id}")
        return response.content

    def list_dashboards(self, connection: ConnectionConfig) -> List[Any]:
        """
        Dashboards visible to the configured API key (Grafana search API)

        Raises:
            ConfigurationError: if the URL or API key is missing
            RenderError: on a failed request or a non-JSON response
        """
        if not connection.grafana_url or not connection.grafana_api_key:
            raise ConfigurationError("Grafana URL or API key not configured")

        url = f"{connection.grafana_url.rstrip('/')}/api/search"
        try:
            with self._client(self.list_timeout) as client:
                response = client.get(url, params={'type': 'dash-db'},
                                      headers=self._auth_headers(connection))
        except httpx.HTTPError as e:
            raise RenderError(f"failed to fetch dashboards: {e}") from e

        if response.status_code != 200:
            body = response.text[:MAX_ERROR_BODY]
            raise RenderError(f"dashboard search failed with status {response.status_code}: {body}",
                              status_code=response.status_code, body=body)
        try:
            return response.json()
        except ValueError as e:
            raise RenderError(f"invalid dashboard search response: {e}") from e
