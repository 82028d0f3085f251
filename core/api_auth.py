#!/usr/bin/env python3
"""
NFTGATE API Authentication Module
=================================

JWT-based authentication and Role-Based Access Control (RBAC).

Features:
- JWT token generation and validation
- Role-based access control
- Users loaded from config
- Switchable off for local use

Author: Team NFTGATE
"""

import jwt
from datetime import datetime, timedelta, timezone
from functools import wraps
from flask import current_app, jsonify, request
from typing import Callable, Dict, Optional

from loguru import logger


class Role:
    """User roles for RBAC"""
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"


DEFAULT_SECRET_KEY = "nftgate-secret-key-change-in-production"
TOKEN_EXPIRATION_HOURS = 24

# Identity attached to requests when auth is disabled
LOCAL_USER = {"username": "local", "role": Role.ADMIN}


def check_role_permission(user_role: str, required_role: str) -> bool:
    """
    Check if user role has permission for required role.

    Role hierarchy:
    - admin: Can perform all actions
    - operator: Can view and change rules
    - viewer: Can only view

    Args:
        user_role: User's role
        required_role: Required role for action

    Returns:
        True if user has permission, False otherwise
    """
    hierarchy = {
        Role.ADMIN: [Role.ADMIN, Role.OPERATOR, Role.VIEWER],
        Role.OPERATOR: [Role.OPERATOR, Role.VIEWER],
        Role.VIEWER: [Role.VIEWER]
    }

    allowed_roles = hierarchy.get(user_role, [])
    return required_role in allowed_roles


class APIAuthManager:
    """
    Centralized API authentication manager.

    Args:
        secret_key: Secret key for JWT signing
        users: ``{username: {"password": ..., "role": ...}}``
        expiration_hours: Token lifetime
        enabled: When False every request runs as LOCAL_USER
    """

    def __init__(self, secret_key: str = DEFAULT_SECRET_KEY,
                 users: Optional[Dict[str, Dict[str, str]]] = None,
                 expiration_hours: int = TOKEN_EXPIRATION_HOURS,
                 enabled: bool = True):
        self.secret_key = secret_key
        self.users = users or {}
        self.expiration_hours = expiration_hours
        self.enabled = enabled

        if enabled and secret_key == DEFAULT_SECRET_KEY:
            logger.warning("API auth is using the default secret key")

        logger.info(f"APIAuthManager initialized ({len(self.users)} users, enabled={enabled})")

    @classmethod
    def from_config(cls, config: Dict, enabled: Optional[bool] = None) -> "APIAuthManager":
        auth_config = config.get("auth", {})
        api_config = config.get("api", {})
        return cls(
            secret_key=api_config.get("secret_key", DEFAULT_SECRET_KEY),
            users=auth_config.get("users", {}),
            expiration_hours=auth_config.get("token_expiration_hours", TOKEN_EXPIRATION_HOURS),
            enabled=auth_config.get("enabled", True) if enabled is None else enabled,
        )

    def generate_token(self, username: str, role: str) -> str:
        """
        Generate JWT token for user.

        Args:
            username: Username
            role: User role (admin, operator, viewer)

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        payload = {
            "username": username,
            "role": role,
            "iat": now,
            "exp": now + timedelta(hours=self.expiration_hours)
        }

        token = jwt.encode(payload, self.secret_key, algorithm="HS256")

        logger.info(f"Generated token for {username} (role: {role})")
        return token

    def decode_token(self, token: str) -> Optional[dict]:
        """
        Decode and validate JWT token.

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(token, self.secret_key, algorithms=["HS256"])

        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None

        except jwt.InvalidTokenError:
            logger.warning("Invalid token")
            return None

    def authenticate_user(self, username: str, password: str) -> Optional[tuple]:
        """
        Check a username/password pair against the configured users.

        Returns:
            Tuple of (username, role) if valid, None otherwise
        """
        user_data = self.users.get(username)

        if user_data and user_data.get("password") == password:
            logger.info(f"User {username} authenticated successfully")
            return username, user_data.get("role", Role.VIEWER)

        logger.warning(f"Failed authentication attempt for {username}")
        return None

    def login(self, username: str, password: str) -> Optional[dict]:
        """
        Authenticate user and generate token.

        Returns:
            Dict with token and user info, or None if authentication fails
        """
        auth_result = self.authenticate_user(username, password)

        if not auth_result:
            return None

        username, role = auth_result
        return {
            "token": self.generate_token(username, role),
            "username": username,
            "role": role,
            "expires_in": self.expiration_hours * 3600  # seconds
        }


def require_auth(required_role: Optional[str] = None) -> Callable:
    """
    Decorator to require authentication and optionally check role.

    The manager is read from ``current_app.config["AUTH_MANAGER"]``.

    Usage:
        @require_auth()  # Any authenticated user
        @require_auth(required_role=Role.OPERATOR)  # Operator or admin
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def wrapper(*args, **kwargs):
            manager: Optional[APIAuthManager] = current_app.config.get("AUTH_MANAGER")

            if manager is None or not manager.enabled:
                request.user = dict(LOCAL_USER)
                return f(*args, **kwargs)

            # Get token from Authorization header
            auth_header = request.headers.get("Authorization")

            if not auth_header or not auth_header.startswith("Bearer "):
                return jsonify({"success": False,
                                "error": "Missing or invalid authorization header"}), 401

            payload = manager.decode_token(auth_header.split(" ", 1)[1])

            if not payload:
                return jsonify({"success": False, "error": "Invalid or expired token"}), 401

            if required_role:
                user_role = payload.get("role")

                if not check_role_permission(user_role, required_role):
                    return jsonify({
                        "success": False,
                        "error": "Insufficient permissions",
                        "required_role": required_role,
                        "user_role": user_role
                    }), 403

            request.user = payload

            return f(*args, **kwargs)

        return wrapper
    return decorator
