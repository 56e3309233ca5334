import json
import time
import uuid
from typing import Dict, Any, Optional
import jwt
from jwcrypto import jwk


class JWTManager:
    """Issues and verifies anonymous participant tokens.

    The token subject is the participant identifier every room operation is
    keyed by; nothing else about the participant is stored server-side.
    """

    def __init__(
        self, issuer: str, application_id: str, token_lifetime_seconds: int = 3600
    ):
        self.issuer = issuer
        self.application_id = application_id
        self.token_lifetime_seconds = token_lifetime_seconds
        self.key_id = "v1"

        # Initialize RSA key pair
        self._setup_keys()

    def _setup_keys(self):
        # In-memory RSA keypair; tokens do not survive a restart
        self.rsa_key = jwk.JWK.generate(kty="RSA", size=2048)

        # Export public key as JWK with kid
        self.public_jwk = json.loads(self.rsa_key.export_public())
        self.public_jwk["kid"] = self.key_id

        # Export PEM format for PyJWT
        self.private_pem = self.rsa_key.export_to_pem(private_key=True, password=None)
        self.public_pem = self.rsa_key.export_to_pem(private_key=False, password=None)

    def issue_anonymous(self, display_name: Optional[str] = None) -> tuple[str, str]:
        """Create a fresh participant identifier and a token for it."""
        participant_id = uuid.uuid4().hex
        token = self.generate_token({"sub": participant_id, "name": display_name})
        return participant_id, token

    def generate_token(self, user_data: Dict[str, Any]) -> str:
        now = int(time.time())

        payload = {
            "iss": self.issuer,
            "aud": self.application_id,
            "sub": user_data["sub"],
            "name": user_data.get("name"),
            "anonymous": True,
            "iat": now,
            "exp": now + self.token_lifetime_seconds,
        }

        headers = {"kid": self.key_id}

        token = jwt.encode(
            payload, self.private_pem, algorithm="RS256", headers=headers
        )
        return token

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify and decode a JWT token"""
        try:
            decoded = jwt.decode(
                token,
                self.public_pem,
                algorithms=["RS256"],
                audience=self.application_id,
                issuer=self.issuer,
            )
            return decoded
        except jwt.PyJWTError as e:
            raise ValueError(f"Invalid token: {e}")

    def get_jwks(self) -> Dict[str, Any]:
        """Get JWKS (JSON Web Key Set) for public key distribution"""
        return {"keys": [self.public_jwk]}


from app.core.config import settings

jwt_manager = JWTManager(
    issuer=settings.jwt.issuer,
    application_id=settings.jwt.application_id,
    token_lifetime_seconds=settings.jwt.token_lifetime_seconds,
)
