# election_ledger/security/token_manager.py
from datetime import timedelta
from flask_jwt_extended import create_access_token, decode_token, get_jwt
from flask import current_app, Flask

from election_ledger.ledger import Session


# JWT wrapper around a ledger session: the token carries the session id and
# the voter's role, the ledger stays the authority on whether it is live.
class TokenManager:
    def __init__(self, app: Flask = None):
        if app:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.config.setdefault("JWT_SECRET_KEY", "change_this_secret_key")
        app.config.setdefault("JWT_ACCESS_TOKEN_EXPIRES", timedelta(hours=1))

    def generate_token(self, session: Session, expires_in: int = None) -> str:
        expires_delta = timedelta(seconds=expires_in) if expires_in else None
        return create_access_token(
            identity=str(session.voter_id),
            additional_claims={"sid": session.token, "role": session.role.value},
            expires_delta=expires_delta,
        )

    def validate_token(self, token: str):
        # Return the claims if the token is valid, else None.
        try:
            return decode_token(token, allow_expired=False)
        except Exception as e:
            current_app.logger.warning(f"Token validation failed: {str(e)}")
            return None

    def session_token(self):
        # Session id of the JWT in the current request context.
        return get_jwt().get("sid")
