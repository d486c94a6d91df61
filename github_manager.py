"""
Game Site Publisher - GitHub Pages Hosting
==========================================

Publishes a site bundle as a new public GitHub repository served by
GitHub Pages, using the GitHub REST API.
"""

import asyncio
import base64
import logging
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote

import httpx

from errors import DeploymentError
from models import Deployment
from site_bundle import extract_bundle, iter_bundle_files

logger = logging.getLogger(__name__)

# Pages endpoints were served behind preview media types when this integration was written
PAGES_PREVIEW = "application/vnd.github.switcheroo-preview+json"
BRANCH_PROTECTION_PREVIEW = "application/vnd.github.luke-cage-preview+json"


class GitHubManager:
    """
    Manages all GitHub repository operations using GitHub REST API.

    Handles:
    - Repository creation
    - Per-file uploads through the contents API
    - GitHub Pages activation and build polling
    - Default branch protection
    """
    def __init__(self, token: str, username: str, api_url: str = "https://api.github.com",
                 branch: str = "main", transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = 30.0, poll_attempts: int = 30, poll_interval: float = 2.0):
        """
        Initialize GitHub manager with authentication token.

        Args:
            token: GitHub Personal Access Token
            username: Account that owns the created repositories
            api_url: GitHub REST API base URL
            branch: Branch the site is committed to and served from
            transport: Optional httpx transport (used by tests)
            timeout: Per-request timeout in seconds
            poll_attempts: Pages status checks before giving up waiting
            poll_interval: Seconds to wait before each Pages status check
        """
        self.token = token
        self.username = username
        self.api_url = api_url.rstrip("/")
        self.branch = branch
        self.transport = transport
        self.timeout = timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json"
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _repo_api(self, repo: str) -> str:
        return f"{self.api_url}/repos/{self.username}/{repo}"

    def pages_url(self, repo: str) -> str:
        return f"https://{self.username}.github.io/{repo}"

    def repo_url(self, repo: str) -> str:
        return f"https://github.com/{self.username}/{repo}"

    async def get_user(self) -> Dict:
        """
        Get authenticated user information from GitHub.

        Returns:
            dict: User information including login (username)

        Raises:
            httpx.HTTPStatusError: If authentication fails
        """
        async with self._client() as client:
            response = await client.get(f"{self.api_url}/user", headers=self.headers)
            response.raise_for_status()
            return response.json()

    async def create_repo(self, repo_name: str) -> Dict:
        """
        Create a new public GitHub repository.

        The repository starts empty; the first uploaded file creates the
        default branch.

        Args:
            repo_name: Unique name for the repository

        Returns:
            dict: GitHub API response with repository details

        Raises:
            DeploymentError: If repository creation fails
        """
        async with self._client() as client:
            response = await client.post(
                f"{self.api_url}/user/repos",
                headers=self.headers,
                json={
                    "name": repo_name,
                    "private": False,
                    "auto_init": False,
                    "has_pages": True
                }
            )
        if response.is_error:
            raise DeploymentError(f"Failed to create repository: {response.text}")
        repo = response.json()
        logger.info("Created repository: %s", repo.get("full_name", repo_name))
        return repo

    async def _put_file(self, client: httpx.AsyncClient, repo: str, path: str, content: bytes) -> bool:
        response = await client.put(
            f"{self._repo_api(repo)}/contents/{quote(path, safe='/')}",
            headers=self.headers,
            json={
                "message": f"Add {path}",
                "content": base64.b64encode(content).decode(), # GitHub API requires base64
                "branch": self.branch
            }
        )
        if response.is_error:
            logger.error("Failed to upload %s: %s %s", path, response.status_code, response.text)
            return False
        return True

    async def upload_file(self, repo: str, path: str, content: bytes) -> bool:
        """
        Commit one file to the repository.

        Args:
            repo: Repository name
            path: File path in repository (forward slashes)
            content: Raw file bytes

        Returns:
            bool: True if GitHub accepted the file, False otherwise
        """
        async with self._client() as client:
            return await self._put_file(client, repo, path, content)

    async def upload_directory(self, repo: str, root: Path) -> List[str]:
        """
        Upload every file under root, one commit per file.

        Uploads are sequential: the contents API rejects concurrent commits
        to the same branch.

        Args:
            repo: Repository name
            root: Local directory holding the extracted bundle

        Returns:
            list: Repository paths that could not be uploaded
        """
        failed = []
        async with self._client() as client:
            for repo_path, local_path in iter_bundle_files(root):
                try:
                    content = await asyncio.to_thread(local_path.read_bytes)
                    ok = await self._put_file(client, repo, repo_path, content)
                except httpx.HTTPError as e:
                    logger.error("Failed to upload %s: %s", repo_path, e)
                    ok = False
                if ok:
                    logger.debug("Uploaded %s", repo_path)
                else:
                    failed.append(repo_path)
        return failed

    async def enable_pages(self, repo: str):
        """
        Enable GitHub Pages for the repository.

        Configures Pages to deploy from the root directory of the branch.

        Args:
            repo: Repository name

        Raises:
            DeploymentError: If Pages activation fails (except 409 conflict)
        """
        async with self._client() as client:
            response = await client.post(
                f"{self._repo_api(repo)}/pages",
                headers={**self.headers, "Accept": PAGES_PREVIEW},
                json={
                    "source": {
                        "branch": self.branch,
                        "path": "/" # Deploy from root directory
                    }
                }
            )
        if response.status_code == 409:
            # 409 Conflict means Pages is already enabled
            logger.info("Pages already enabled for %s", repo)
            return
        if response.is_error:
            logger.error("Failed to enable GitHub Pages: %s", response.text)
            raise DeploymentError("Failed to enable GitHub Pages")

    async def get_pages_status(self, repo: str) -> Optional[str]:
        """
        Get the current Pages build status ("built", "building", "errored", ...).

        Returns:
            str: Status reported by GitHub, or None if it could not be read
        """
        async with self._client() as client:
            response = await client.get(
                f"{self._repo_api(repo)}/pages",
                headers={**self.headers, "Accept": PAGES_PREVIEW}
            )
        if response.is_error:
            return None
        try:
            return response.json().get("status")
        except ValueError:
            logger.warning("Unreadable Pages status for %s: %s", repo, response.text[:200])
            return None

    async def wait_for_pages(self, repo: str, max_attempts: int = 30, interval: float = 2.0) -> bool:
        """
        Poll the Pages status until the first build completes.

        Waits before every check, since a freshly enabled site is never
        built on the first request. Each attempt waits `interval` seconds,
        allowing about one minute with the defaults.

        Args:
            repo: Repository name
            max_attempts: Maximum number of status checks (default: 30)
            interval: Seconds to wait before each check (default: 2.0)

        Returns:
            bool: True if Pages reported "built", False if attempts ran out
        """
        logger.info("Waiting for GitHub Pages to be ready...")
        for attempt in range(max_attempts):
            await asyncio.sleep(interval)
            try:
                status = await self.get_pages_status(repo)
            except httpx.HTTPError as e:
                logger.warning("Attempt %d: %s", attempt + 1, e)
                continue
            logger.info("GitHub Pages status: %s (attempt %d)", status, attempt + 1)
            if status == "built":
                return True

        logger.warning("GitHub Pages is taking longer than expected to be ready. "
                       "The site will be available at the URL shortly.")
        return False

    async def protect_branch(self, repo: str) -> bool:
        """
        Add an empty protection rule to the site branch (best effort).

        Returns:
            bool: True if GitHub accepted the rule
        """
        try:
            async with self._client() as client:
                response = await client.put(
                    f"{self._repo_api(repo)}/branches/{self.branch}/protection",
                    headers={**self.headers, "Accept": BRANCH_PROTECTION_PREVIEW},
                    json={
                        "required_status_checks": None,
                        "enforce_admins": False,
                        "required_pull_request_reviews": None,
                        "restrictions": None
                    }
                )
        except httpx.HTTPError as e:
            logger.warning("Could not set up branch protection: %s", e)
            return False
        if response.is_error:
            logger.warning("Could not set up branch protection: %s %s", response.status_code, response.text)
            return False
        return True

    async def publish(self, zip_bytes: bytes, repo_name: str, workdir: Path) -> Deployment:
        """
        Execute the complete GitHub Pages workflow for one bundle.

        Workflow:
        1. Extract the bundle into workdir
        2. Create the repository
        3. Upload every file
        4. Enable and wait for GitHub Pages
        5. Protect the site branch

        Args:
            zip_bytes: Deployment ZIP from site_bundle.build_deployment_zip
            repo_name: Repository name (already sanitized)
            workdir: Empty scratch directory owned by the caller

        Returns:
            Deployment: Public URL, repository URL and upload report

        Raises:
            DeploymentError: If the repository or Pages cannot be set up
        """
        await asyncio.to_thread(extract_bundle, zip_bytes, workdir)

        logger.info("Creating GitHub repository %s/%s...", self.username, repo_name)
        await self.create_repo(repo_name)

        logger.info("Uploading files...")
        failed = await self.upload_directory(repo_name, workdir)
        if failed:
            logger.warning("[WARNING] %d file(s) failed to upload: %s", len(failed), ", ".join(failed))

        logger.info("Enabling GitHub Pages...")
        await self.enable_pages(repo_name)
        ready = await self.wait_for_pages(repo_name, self.poll_attempts, self.poll_interval)

        logger.info("Setting up branch protection...")
        await self.protect_branch(repo_name)

        url = self.pages_url(repo_name)
        logger.info("[OK] Final deploy URL: %s", url)
        return Deployment(
            url=url,
            repo=self.repo_url(repo_name),
            message="Site is being deployed. It may take a few minutes to be fully accessible.",
            ready=ready,
            failed_uploads=failed,
        )
