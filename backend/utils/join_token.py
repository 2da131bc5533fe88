import jwt

from backend.config import get_settings

JOIN_TOKEN_ISSUER = "meeting-reminders"


def verify_join_token(token: str, meeting_id: str, secret: str | None = None) -> bool:
    secret = secret if secret is not None else get_settings().meeting_link_secret
    if not secret or not token:
        return False
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"], issuer=JOIN_TOKEN_ISSUER)
    except jwt.PyJWTError:
        return False
    return payload.get("sub") == meeting_id
