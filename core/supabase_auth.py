# core/supabase_auth.py
# Identity resolver: verifies Supabase JWTs and maps them to a marketplace user

import os
import logging
import jwt
from django.contrib.auth import get_user_model
from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

logger = logging.getLogger("scribe.auth")

User = get_user_model()


class SupabaseJWTAuthentication(BaseAuthentication):
    """
    Custom authentication class that validates Supabase JWTs.

    This authenticator:
    1. Extracts the JWT from the Authorization header
    2. Verifies the token signature using the Supabase JWT secret
    3. Looks up or creates a Django user based on the token email,
       taking the marketplace role and wallet from user_metadata
    """

    def authenticate(self, request):
        auth_header = request.headers.get("Authorization", "")

        if not auth_header.startswith("Bearer "):
            return None  # Let other auth backends handle it

        token = auth_header.split(" ", 1)[1]

        supabase_jwt_secret = os.environ.get("SUPABASE_JWT_SECRET")
        if not supabase_jwt_secret:
            logger.debug("SUPABASE_JWT_SECRET not configured")
            return None

        try:
            # Supabase uses HS256 by default
            payload = jwt.decode(
                token,
                supabase_jwt_secret,
                algorithms=["HS256"],
                audience="authenticated",
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationFailed("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid Supabase token: {e}")
            return None  # Let other auth backends try

        if not payload.get("sub"):
            raise AuthenticationFailed("Invalid token: missing user ID")

        user = self._get_or_create_user(payload)
        return (user, payload)

    def authenticate_header(self, request):
        return 'Bearer realm="api"'

    def _get_or_create_user(self, payload: dict):
        """
        Get or create a Django user for the token.

        Email is the primary identifier. Role and wallet are only taken from
        the token when the local record has none, so admin-side changes win.
        """
        email = payload.get("email")
        if not email:
            raise AuthenticationFailed("Token missing email claim")

        metadata = payload.get("user_metadata") or {}
        role = metadata.get("role")
        wallet = metadata.get("wallet_address")

        try:
            user = User.objects.get(email=email)
        except User.DoesNotExist:
            username = email.split("@")[0]
            # Ensure unique username
            base_username = username
            counter = 1
            while User.objects.filter(username=username).exists():
                username = f"{base_username}_{counter}"
                counter += 1

            user = User.objects.create(
                username=username,
                email=email,
                role=role if role in dict(User.ROLE_CHOICES) and role != User.ROLE_ADMIN else User.ROLE_WRITER,
                wallet_address=wallet or None,
            )
            logger.info(f"Created new user from Supabase: {email} role={user.role}")
            return user

        if wallet and not user.wallet_address:
            user.wallet_address = wallet
            user.save(update_fields=["wallet_address"])

        return user
