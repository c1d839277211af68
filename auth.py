import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError

from config import Settings
from errors import UnauthorizedError

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "pinboard"


@dataclass(frozen=True)
class Identity:
    subject_id: str
    claims: Dict[str, Any] = field(default_factory=dict)


class FirebaseVerifier:
    """Verifies Firebase ID tokens issued to the mobile / web clients."""

    def __init__(self, settings: Settings):
        self.app: Optional[firebase_admin.App] = None
        project_id = settings.firebase_project_id
        client_email = settings.firebase_client_email
        private_key = settings.firebase_private_key
        if not project_id or not client_email or not private_key or project_id == "your-project-id":
            logger.warning("Firebase credentials not configured - auth endpoints will not work")
            return
        try:
            self.app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            try:
                cred = credentials.Certificate({
                    "type": "service_account",
                    "project_id": project_id,
                    "client_email": client_email,
                    "private_key": private_key,
                    "token_uri": "https://oauth2.googleapis.com/token",
                })
                self.app = firebase_admin.initialize_app(cred, name=FIREBASE_APP_NAME)
            except ValueError as exc:
                logger.error("Failed to initialize Firebase: %s", exc)

    @property
    def configured(self) -> bool:
        return self.app is not None

    def verify(self, token: str) -> Identity:
        if self.app is None:
            raise UnauthorizedError("Authentication service not configured")
        try:
            decoded = firebase_auth.verify_id_token(token, app=self.app)
        except firebase_auth.ExpiredIdTokenError:
            raise UnauthorizedError("Token expired")
        except (firebase_auth.InvalidIdTokenError, ValueError):
            raise UnauthorizedError("Invalid token")
        except FirebaseError as exc:
            logger.error("Token verification failed: %s", exc)
            raise UnauthorizedError("Authentication failed")
        return Identity(subject_id=decoded["uid"], claims=decoded)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("No token provided")
    token = authorization.split("Bearer ", 1)[1].strip()
    if not token:
        raise UnauthorizedError("No token provided")
    return token
