"""
Game Site Publisher - Main Application
======================================

A FastAPI-based publishing service that:
- Authenticates users against Supabase Auth
- Receives game assets (HTML/CSS/JS/audio/images or ZIP archives)
- Repackages them into a single site bundle
- Creates a GitHub repository and deploys it to GitHub Pages
  (or deploys to Netlify when configured)
- Records each published game in the Supabase "games" table
"""

import asyncio
import logging
import shutil
import tempfile
import traceback
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional, Union

import httpx
from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from errors import AuthenticationError, BundleError
from github_manager import GitHubManager
from models import AuthenticatedUser, UploadedAsset
from netlify_manager import NetlifyManager
from site_bundle import (build_deployment_zip, check_sizes, default_game_name,
                         repo_name_for, validate_upload)
from supabase_services import GameStore, IdentityProvider, get_supabase

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await check_configuration()
    yield


# Initialize FastAPI application
app = FastAPI(title="Game Site Publisher", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

Publisher = Union[GitHubManager, NetlifyManager]

PROVIDER_NOTES = {
    "github": "GitHub Pages may take 1-3 minutes to make your site accessible.",
    "netlify": "Netlify may take a minute to make your site accessible.",
}


def _error_body(error: str, exc: Exception) -> Dict:
    body = {"error": error, "details": str(exc)}
    if config.DEBUG:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return body


# ============================================================================
# DEPLOYMENT MANAGER - Orchestrates Complete Workflow
# ============================================================================
class DeploymentManager:
    """
    Orchestrates the complete deployment workflow from upload to stored record.

    Workflow:
    1. Validate the upload (sizes, index.html)
    2. Derive the repository/site name
    3. Build the deployment bundle
    4. Publish it with the configured hosting provider
    5. Record the game in the metadata store
    """
    def __init__(self, publisher: Publisher, store: GameStore, provider: str = "github",
                 max_upload_size: int = config.MAX_UPLOAD_SIZE, temp_dir: Optional[str] = None):
        """
        Args:
            publisher: GitHubManager or NetlifyManager
            store: Deployment metadata store
            provider: Provider name, selects the note returned to the client
            max_upload_size: Per-file size limit in bytes
            temp_dir: Parent directory for per-deployment scratch directories
        """
        self.publisher = publisher
        self.store = store
        self.provider = provider
        self.max_upload_size = max_upload_size
        self.temp_dir = temp_dir

    async def deploy(self, assets: List[UploadedAsset], game_name: Optional[str],
                     user: AuthenticatedUser) -> Dict:
        """
        Execute complete deployment workflow.

        Args:
            assets: Uploaded files
            game_name: Display name from the form, generated when empty
            user: Authenticated uploader

        Returns:
            dict: Response payload with site URL, repository URL and status

        Raises:
            BundleError: If the upload is not a publishable site
            DeploymentError: If the hosting provider fails
            GameStoreError: If the record cannot be saved
        """
        check_sizes(assets, self.max_upload_size)
        # ZIP inspection and recompression run off the event loop
        await asyncio.to_thread(validate_upload, assets)

        game_name = (game_name or "").strip() or default_game_name()
        repo_name = repo_name_for(game_name)
        logger.info("Using game name: %s (repository: %s)", game_name, repo_name)

        # Scratch space is per deployment so concurrent uploads never share files
        workdir = Path(tempfile.mkdtemp(prefix=f"deploy-{repo_name}-", dir=self.temp_dir))
        logger.info("Created temporary directory: %s", workdir)
        try:
            zip_bytes = await asyncio.to_thread(build_deployment_zip, assets)
            deployment = await self.publisher.publish(zip_bytes, repo_name, workdir)
        finally:
            logger.info("Cleaning up temporary directory")
            await asyncio.to_thread(shutil.rmtree, workdir, ignore_errors=True)

        logger.info("Saving game information to database...")
        await self.store.insert_game(
            name=game_name,
            url=deployment.url,
            repo_url=deployment.repo,
            user_id=user.id,
        )

        return {
            "message": "Game deployed successfully",
            "url": deployment.url,
            "repo": deployment.repo,
            "status": "deploying",
            "ready": deployment.ready,
            "note": PROVIDER_NOTES.get(self.provider, deployment.message),
            "name": game_name,
            "failedFiles": deployment.failed_uploads,
        }


# ============================================================================
# DEPENDENCIES
# ============================================================================
_publisher: Optional[Publisher] = None


def get_publisher() -> Publisher:
    """Build the hosting provider client once, from configuration."""
    global _publisher
    if _publisher is None:
        if config.HOSTING_PROVIDER == "netlify":
            _publisher = NetlifyManager(
                config.NETLIFY_TOKEN,
                api_url=config.NETLIFY_API,
                poll_attempts=config.NETLIFY_POLL_ATTEMPTS,
                poll_interval=config.NETLIFY_POLL_INTERVAL,
            )
        else:
            _publisher = GitHubManager(
                config.GITHUB_TOKEN,
                config.GITHUB_USERNAME,
                api_url=config.GITHUB_API,
                branch=config.GITHUB_BRANCH,
                poll_attempts=config.PAGES_POLL_ATTEMPTS,
                poll_interval=config.PAGES_POLL_INTERVAL,
            )
    return _publisher


async def get_identity_provider() -> IdentityProvider:
    return IdentityProvider(await get_supabase(config.SUPABASE_URL, config.SUPABASE_KEY))


async def get_game_store() -> GameStore:
    return GameStore(await get_supabase(config.SUPABASE_URL, config.SUPABASE_KEY), config.GAMES_TABLE)


async def get_deployment_manager(store: GameStore = Depends(get_game_store)) -> DeploymentManager:
    return DeploymentManager(
        get_publisher(),
        store,
        provider=config.HOSTING_PROVIDER,
        temp_dir=config.TEMP_DIR,
    )


async def get_current_user(
    authorization: Optional[str] = Header(None),
    identity: IdentityProvider = Depends(get_identity_provider)
) -> AuthenticatedUser:
    """
    Resolve the Authorization: Bearer <token> header to a user.

    Raises:
        AuthenticationError: If the header or token is missing or rejected
    """
    if not authorization:
        raise AuthenticationError("No authorization header")

    parts = authorization.split(" ")
    token = parts[1] if len(parts) > 1 else ""
    if not token:
        raise AuthenticationError("No token provided")

    user = await identity.get_user(token)
    logger.info("Authenticated user: %s", user.id)
    return user


# ============================================================================
# ERROR HANDLERS
# ============================================================================
@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    content = {"error": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=401, content=content)


@app.exception_handler(BundleError)
async def bundle_error_handler(request: Request, exc: BundleError):
    content = {"error": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"message": "Internal Server Error"}
    if config.DEBUG:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# ============================================================================
# LIFECYCLE
# ============================================================================
async def check_configuration():
    """
    Refuse to start without credentials and log the effective configuration.

    Raises:
        RuntimeError: If required environment variables are missing
    """
    missing = config.missing_settings()
    if missing:
        for name in missing:
            logger.error("%s is not configured. Please set it in your .env file", name)
        raise RuntimeError(f"Missing configuration: {', '.join(missing)}")

    publisher = get_publisher()
    if isinstance(publisher, GitHubManager):
        try:
            user = await publisher.get_user()
        except httpx.HTTPError as e:
            logger.warning("[WARNING] Could not verify GitHub token: %s", e)
        else:
            if user.get("login", "").lower() != publisher.username.lower():
                logger.warning("[WARNING] GitHub token belongs to %s, not GITHUB_USERNAME %s",
                               user.get("login"), publisher.username)

    logger.info("Server configuration:")
    logger.info("- CORS origins: %s", config.CORS_ORIGINS)
    logger.info("- Hosting provider: %s", config.HOSTING_PROVIDER)
    logger.info("- Supabase connection: %s", "Configured" if config.SUPABASE_URL else "Missing")


# ============================================================================
# FASTAPI ENDPOINTS
# ============================================================================
@app.get("/")
async def root():
    """
    Root endpoint - Basic system information.

    Returns:
        dict: Service name, hosting provider and which integrations have
            credentials configured
    """
    return {
        "status": "running",
        "service": "Game Site Publisher",
        "hosting_provider": config.HOSTING_PROVIDER,
        "github_configured": bool(config.GITHUB_TOKEN and config.GITHUB_USERNAME),
        "netlify_configured": bool(config.NETLIFY_TOKEN),
        "supabase_configured": bool(config.SUPABASE_URL and config.SUPABASE_KEY),
    }


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.post("/api/upload")
async def upload(
    files: Optional[List[UploadFile]] = File(None),
    game_name: Optional[str] = Form(None, alias="gameName"),
    user: AuthenticatedUser = Depends(get_current_user),
    manager: DeploymentManager = Depends(get_deployment_manager)
):
    """
    Publish uploaded game assets as a live website.

    Multipart form fields:
    - files: One or more files (HTML/CSS/JS/media, or ZIP archives)
    - gameName: Display name (optional, generated when missing)

    Returns:
        JSONResponse: Site URL, repository URL and deployment status

    Errors:
        400/413: Upload is not a publishable site (see BundleError)
        500: Hosting provider or database failure
    """
    assets = []
    for upload_file in files or []:
        content = await upload_file.read()
        assets.append(UploadedAsset(upload_file.filename or "", content, upload_file.content_type))
    logger.info("Received files: %s", [(a.filename, a.size) for a in assets])

    try:
        result = await manager.deploy(assets, game_name, user)
    except BundleError:
        raise
    except Exception as e:
        logger.exception("Upload process error")
        return JSONResponse(status_code=500, content=_error_body("Failed to process upload", e))

    logger.info("[OK] Deployment complete: %s", result["url"])
    return result


@app.get("/api/games")
async def list_games(
    user: AuthenticatedUser = Depends(get_current_user),
    store: GameStore = Depends(get_game_store)
):
    """List the authenticated user's published games, newest first."""
    try:
        games = await store.list_games(user.id)
    except Exception as e:
        logger.exception("Error fetching games")
        return JSONResponse(status_code=500, content=_error_body("Failed to fetch games", e))

    logger.info("Found games: %d", len(games))
    return {"games": games}


# ============================================================================
# APPLICATION ENTRY POINT
# ============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
