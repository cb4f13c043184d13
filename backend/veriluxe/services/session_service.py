"""
Redis-backed bearer token store.
"""
import json
import secrets
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID

import redis
from redis import Redis

from veriluxe.core.config import settings

TOKEN_KEY_PREFIX = "token:"


class TokenStore:
    """Maps opaque bearer tokens to the identity they were issued for."""

    def __init__(self, redis_client: Optional[Redis] = None):
        """Initialize Redis connection."""
        self.redis_client: Redis = redis_client or redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30
        )
        self.token_expiry = settings.TOKEN_EXPIRY_SECONDS

    @staticmethod
    def _key(token: str) -> str:
        return f"{TOKEN_KEY_PREFIX}{token}"

    def generate_token(self) -> str:
        """
        Generate a cryptographically secure bearer token.

        Returns:
            64-character hex string
        """
        return secrets.token_hex(32)

    def create_token(self, user_id: UUID, user_data: Dict[str, Any]) -> str:
        """
        Issue a token for a user.

        Args:
            user_id: UUID of the user
            user_data: Identity fields to keep with the token (role, email)

        Returns:
            Bearer token string

        Example:
            >>> token = token_store.create_token(
            ...     user_id=uuid4(),
            ...     user_data={"email": "user@example.com", "role": "admin"}
            ... )
        """
        token = self.generate_token()

        token_data = {
            "user_id": str(user_id),
            "created_at": datetime.utcnow().isoformat(),
            **user_data
        }

        self.redis_client.setex(
            self._key(token),
            self.token_expiry,
            json.dumps(token_data)
        )

        return token

    def get_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Resolve a bearer token.

        Args:
            token: Token to look up

        Returns:
            Dictionary with at least user_id and role, or None if the token
            doesn't exist or expired
        """
        data = self.redis_client.get(self._key(token))
        if not data:
            return None
        return json.loads(data)

    def delete_token(self, token: str) -> bool:
        """
        Revoke a token (logout).

        Returns:
            True if the token was deleted, False if it didn't exist
        """
        result = self.redis_client.delete(self._key(token))
        return result > 0

    def delete_user_tokens(self, user_id: UUID) -> int:
        """
        Revoke every token issued to a user.

        Returns:
            Number of tokens deleted
        """
        deleted_count = 0

        for key in self.redis_client.scan_iter(match=f"{TOKEN_KEY_PREFIX}*"):
            data = self.redis_client.get(key)
            if data:
                token_data = json.loads(data)
                if token_data.get("user_id") == str(user_id):
                    self.redis_client.delete(key)
                    deleted_count += 1

        return deleted_count

    def health_check(self) -> bool:
        """
        Check if Redis connection is healthy.

        Returns:
            True if Redis is responding, False otherwise
        """
        try:
            self.redis_client.ping()
            return True
        except redis.RedisError:
            return False


# Global token store instance
token_store = TokenStore()
