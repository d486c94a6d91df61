"""
Game Site Publisher - Netlify Hosting
=====================================

Alternative provider selected with HOSTING_PROVIDER=netlify. Netlify takes
the deployment ZIP in a single request, so nothing is extracted to disk.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

import httpx

from errors import DeploymentError
from models import Deployment

logger = logging.getLogger(__name__)

# Deploy states that mean "keep waiting", with the line logged for each
IN_PROGRESS_STATES = {
    "processing": "Processing deployment...",
    "uploading": "Uploading files...",
    "preparing": "Preparing deployment...",
    "initiated": "Deployment initiated...",
    "new": "Setting up new deployment...",
    "building": "Building site...",
}


class NetlifyManager:
    """Creates a Netlify site per game and deploys the bundle to it."""

    def __init__(self, token: str, api_url: str = "https://api.netlify.com/api/v1",
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 60.0,
                 poll_attempts: int = 30, poll_interval: float = 5.0):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.headers = {"Authorization": f"Bearer {token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def create_site(self, name: str) -> Dict:
        async with self._client() as client:
            response = await client.post(
                f"{self.api_url}/sites",
                headers=self.headers,
                json={"name": name}
            )
        if response.is_error:
            raise DeploymentError(f"Failed to create Netlify site: {response.text}")
        site = response.json()
        logger.info("Created Netlify site: %s (%s)", site.get("name"), site.get("id"))
        return site

    async def deploy_zip(self, site_id: str, zip_bytes: bytes) -> Dict:
        async with self._client() as client:
            response = await client.post(
                f"{self.api_url}/sites/{site_id}/deploys",
                headers={**self.headers, "Content-Type": "application/zip"},
                content=zip_bytes
            )
        if response.is_error:
            raise DeploymentError(f"Failed to deploy to Netlify: {response.text}")
        return response.json()

    async def check_deploy_status(self, site_id: str, deploy_id: str) -> Dict:
        """
        Fetch the current state of a deploy.

        Raises:
            DeploymentError: If the status cannot be read or the deploy failed
        """
        async with self._client() as client:
            response = await client.get(
                f"{self.api_url}/sites/{site_id}/deploys/{deploy_id}",
                headers=self.headers
            )
        if response.is_error:
            raise DeploymentError("Failed to check deployment status")

        status = response.json()
        logger.info("Current deployment status: %s", status.get("state"))
        if status.get("state") == "error":
            raise DeploymentError(f"Deployment failed: {status.get('error_message') or 'Unknown error'}")
        return status

    async def wait_for_deploy(self, site_id: str, deploy_id: str,
                              max_attempts: int = 30, interval: float = 5.0) -> Dict:
        """
        Poll a deploy until Netlify reports it ready.

        A deploy that is still processing after the last attempt but already
        has a public URL counts as published.

        Args:
            site_id: Netlify site id
            deploy_id: Deploy id returned by deploy_zip
            max_attempts: Maximum number of status checks (default: 30)
            interval: Seconds to wait after each non-final check (default: 5.0)

        Returns:
            dict: Last deploy status seen

        Raises:
            DeploymentError: If the deploy fails, or times out without a URL
        """
        last_status = None
        for attempt in range(max_attempts):
            status = await self.check_deploy_status(site_id, deploy_id)
            last_status = status
            state = status.get("state")

            if state == "ready":
                logger.info("[OK] Deployment is live at: %s", status.get("ssl_url"))
                return status
            logger.info(IN_PROGRESS_STATES.get(state, f"Current state: {state}"))

            if attempt < max_attempts - 1:
                await asyncio.sleep(interval)

        if last_status and last_status.get("ssl_url"):
            logger.warning("Deployment is still processing, returning available URL: %s",
                           last_status["ssl_url"])
            return last_status

        logger.error("Last known deployment status: %s", last_status)
        raise DeploymentError("Deployment timed out - please check Netlify dashboard")

    async def publish(self, zip_bytes: bytes, site_name: str, workdir: Path) -> Deployment:
        """
        Create a site, deploy the bundle and wait for it to go live.

        Args:
            zip_bytes: Deployment ZIP from site_bundle.build_deployment_zip
            site_name: Requested Netlify subdomain
            workdir: Unused; kept so providers share one signature

        Returns:
            Deployment: Public URL and site admin URL
        """
        site = await self.create_site(site_name)
        deploy = await self.deploy_zip(site["id"], zip_bytes)
        status = await self.wait_for_deploy(site["id"], deploy["id"], self.poll_attempts, self.poll_interval)

        url = status.get("ssl_url") or deploy.get("ssl_url") or site.get("ssl_url")
        return Deployment(
            url=url,
            repo=site.get("admin_url", ""),
            message="Site deployed to Netlify.",
            ready=status.get("state") == "ready",
        )
