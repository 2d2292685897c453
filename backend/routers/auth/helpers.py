from fastapi import HTTPException, status
from config import JWT_SECRET_KEY, JWT_ALGORITHM
import jwt
import logging

logger = logging.getLogger(__name__)

class AuthHelpers:
    """Helper functions for authentication operations"""

    def verify_token(self, token: str):
        """
        Verify JWT token locally against the shared secret of the identity provider
        Returns user object with role from JWT
        """
        if not JWT_SECRET_KEY:
            logger.error("JWT_SECRET_KEY is not configured")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token verification failed"
            )

        try:
            payload = jwt.decode(
                token,
                JWT_SECRET_KEY,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_exp": True,
                    "verify_iat": True,
                    "verify_signature": True,
                    "verify_aud": False
                }
            )

            user_id = payload.get("sub")
            email = payload.get("email")
            user_metadata = payload.get("user_metadata", {}) or {}
            role = user_metadata.get("role")
            name = user_metadata.get("name") or user_metadata.get("username")

            if not user_id:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid token: missing user ID"
                )

            return type('User', (), {
                'id': user_id,
                'email': email,
                'role': role,
                'name': name,
                'payload': payload
            })()

        except HTTPException:
            raise
        except jwt.ExpiredSignatureError:
            logger.warning("JWT token expired")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token expired"
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid JWT token: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token"
            )
        except Exception as e:
            logger.error(f"JWT verification failed: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token verification failed"
            )

auth_helpers = AuthHelpers()
