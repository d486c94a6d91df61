"""
Game Site Publisher - Supabase Integration
==========================================

Supabase provides both the identity provider (bearer token validation)
and the deployment metadata store (the "games" table).
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from supabase import AsyncClient, AuthError, PostgrestAPIError, acreate_client

from errors import AuthenticationError, GameStoreError
from models import AuthenticatedUser

logger = logging.getLogger(__name__)

# PostgreSQL error codes surfaced through PostgREST
POSTGRES_ERRORS = {
    "42P01": 'Database table "{table}" does not exist. Please create the table first.',
    "23503": "Invalid user ID or reference.",
    "23505": "A game with this name already exists.",
}

_client: Optional[AsyncClient] = None


async def get_supabase(url: str, key: str) -> AsyncClient:
    """Get the shared Supabase client, creating it on first use."""
    global _client
    if _client is None:
        logger.info("Connecting to Supabase at %s", url)
        _client = await acreate_client(url, key)
    return _client


class IdentityProvider:
    """Validates access tokens issued by Supabase Auth."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def get_user(self, token: str) -> AuthenticatedUser:
        """
        Resolve a bearer token to the user it was issued for.

        Args:
            token: Supabase access token (JWT) from the Authorization header

        Returns:
            AuthenticatedUser: The token's owner

        Raises:
            AuthenticationError: If the token is invalid, expired, or has no user
        """
        try:
            response = await self.client.auth.get_user(token)
        except AuthError as e:
            logger.warning("Supabase auth error: %s", e)
            raise AuthenticationError("Invalid or expired token") from e
        except Exception as e:
            logger.exception("Auth middleware error")
            raise AuthenticationError("Authentication failed", details=str(e)) from e

        if response is None or response.user is None:
            raise AuthenticationError("User not found")
        return AuthenticatedUser(id=response.user.id, email=response.user.email)


class GameStore:
    """One row per published game, owned by the uploading user."""

    def __init__(self, client: AsyncClient, table: str = "games"):
        self.client = client
        self.table = table

    async def insert_game(self, name: str, url: str, repo_url: str, user_id: str) -> Dict:
        """
        Record a published game.

        Args:
            name: Display name chosen by the user
            url: Public site URL
            repo_url: Source repository (or provider admin) URL
            user_id: Owning user's id

        Returns:
            dict: The stored row as returned by the database

        Raises:
            GameStoreError: If the insert fails or returns no row
        """
        row = {
            "name": name,
            "url": url,
            "repo_url": repo_url,
            "user_id": user_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "status": "active"
        }
        try:
            response = await self.client.table(self.table).insert(row).execute()
        except PostgrestAPIError as e:
            logger.error("Database error details: code=%s message=%s details=%s hint=%s",
                         e.code, e.message, e.details, e.hint)
            message = POSTGRES_ERRORS.get(e.code, "Failed to save game information: {message}")
            message = message.format(table=self.table, message=e.message)
            raise GameStoreError(message, code=e.code) from e

        if not response.data:
            raise GameStoreError("Failed to save game information: No data returned")
        logger.info("Game information saved: %s", response.data[0].get("id"))
        return response.data[0]

    async def list_games(self, user_id: str) -> List[Dict]:
        """
        Get a user's games, newest first.

        Raises:
            GameStoreError: If the query fails
        """
        try:
            response = await (
                self.client.table(self.table)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except PostgrestAPIError as e:
            logger.error("Database error when fetching games: code=%s message=%s details=%s hint=%s",
                         e.code, e.message, e.details, e.hint)
            raise GameStoreError(e.message or "Failed to fetch games", code=e.code) from e
        return response.data or []
