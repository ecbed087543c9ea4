import os
import jwt
import json
import requests
from typing import Optional, Dict
from datetime import datetime, timezone
import logging
from cryptography.hazmat.primitives import serialization

logger = logging.getLogger(__name__)


class SupabaseJWTVerifier:
    def __init__(self):
        self.supabase_url = os.getenv("SUPABASE_URL")
        self._jwks_cache = None
        self._jwks_cache_time = None
        self._cache_ttl = 3600  # 1 hour cache

    def _fetch_jwks(self) -> Optional[Dict]:
        """Fetch JWT signing keys from Supabase"""
        if not self.supabase_url:
            return None

        current_time = datetime.now(timezone.utc).timestamp()

        if (self._jwks_cache and self._jwks_cache_time and
                current_time - self._jwks_cache_time < self._cache_ttl):
            return self._jwks_cache

        headers = {}
        anon_key = os.getenv("SUPABASE_ANON_KEY")
        if anon_key:
            headers["apikey"] = anon_key

        try:
            response = requests.get(
                f"{self.supabase_url}/auth/v1/jwks", headers=headers, timeout=10
            )
            if response.status_code != 200:
                logger.error(f"Failed to fetch JWKS: HTTP {response.status_code}")
                return None

            self._jwks_cache = response.json()
            self._jwks_cache_time = current_time
            return self._jwks_cache

        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching JWKS: {str(e)}")
            return None

    def _get_public_key(self, kid: str) -> Optional[str]:
        """PEM public key for the given key ID"""
        jwks = self._fetch_jwks()
        if not jwks:
            return None

        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                public_key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(key))
                pem = public_key.public_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PublicFormat.SubjectPublicKeyInfo,
                )
                return pem.decode("utf-8")

        logger.warning(f"Key ID {kid} not found in JWKS")
        return None

    def verify_token(self, token: str) -> Optional[Dict]:
        """Verify a Supabase access token (HS256 or RS256), returning its claims"""
        if not token:
            return None

        try:
            header = jwt.get_unverified_header(token)
            algorithm = header.get("alg", "").upper()

            if algorithm == "HS256":
                secret = os.getenv("JWT_SECRET_KEY")
                if not secret:
                    logger.warning("JWT_SECRET_KEY not found for HS256 token verification")
                    return None
                key = secret
            elif algorithm == "RS256":
                kid = header.get("kid")
                key = self._get_public_key(kid) if kid else None
                if not key:
                    logger.warning("No public key available for RS256 token")
                    return None
            else:
                logger.warning(f"Unsupported token algorithm: {algorithm}")
                return None

            payload = jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                options={"verify_exp": True, "verify_aud": False},
            )

            if self.supabase_url:
                expected_iss = f"{self.supabase_url}/auth/v1"
                if payload.get("iss") != expected_iss:
                    logger.warning(f"Invalid issuer: {payload.get('iss')} != {expected_iss}")
                    return None

            return payload

        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {str(e)}")
            return None

    def extract_user_id(self, token: str) -> Optional[str]:
        """Supabase puts the user ID in the 'sub' claim"""
        payload = self.verify_token(token)
        return payload.get("sub") if payload else None


# Global instance
jwt_verifier = SupabaseJWTVerifier()


def get_user_id_from_token(token: str) -> Optional[str]:
    """Convenience function to extract user ID from token"""
    return jwt_verifier.extract_user_id(token)
