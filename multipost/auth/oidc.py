# multipost/auth/oidc.py
from jose import jwt, exceptions as jose_errors

from multipost.utils.logging import get_logger

logger = get_logger(__name__)

# Known LinkedIn issuer variants seen in the wild
LINKEDIN_ISS_ALLOWLIST = {
    "https://www.linkedin.com",
    "https://www.linkedin.com/",
    "https://www.linkedin.com/oauth",
    "https://www.linkedin.com/oauth/",
}

def id_token_subject(id_token: str) -> str:
    """
    Return the 'sub' claim of an id_token obtained directly from the LinkedIn
    token endpoint, or '' if it cannot be read or the issuer is unexpected.

    The token arrives over the TLS channel of the code exchange, so the
    signature is not re-verified against the JWKS here.
    """
    try:
        claims = jwt.get_unverified_claims(id_token)
    except jose_errors.JOSEError as e:
        logger.warning("id_token_unreadable", error=str(e))
        return ""

    iss = claims.get("iss")
    if iss not in LINKEDIN_ISS_ALLOWLIST:
        logger.warning("id_token_unexpected_issuer", iss=iss)
        return ""
    return str(claims.get("sub") or "")
