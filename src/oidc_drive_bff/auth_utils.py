# src/oidc_drive_bff/auth_utils.py

import logging
import typing
from urllib.parse import urlencode

import requests
from jose import JWTError, jwt

from .config import Settings, settings as default_settings
from .errors import IDTokenValidationError, StateMismatchError
from .security import constant_time_equals, generate_random_value
from .session_data import SessionData

logger = logging.getLogger(__name__)

STATE_LENGTH = 24
NONCE_LENGTH = 24

# Cache for signing keys to avoid fetching them on every callback
JWKS_CACHE: typing.Dict[str, typing.Dict] = {}


# --- Authorization request ---

def build_auth_url(
    session: SessionData,
    scopes: typing.Optional[typing.List[str]] = None,
    settings: Settings = default_settings,
) -> str:
    """
    Builds the provider authorization URL for a new flow.
    `state` and `nonce` are generated here and stored on the session before the URL is returned.
    """
    if not scopes:
        scopes = settings.SCOPES

    state = generate_random_value(STATE_LENGTH)
    nonce = generate_random_value(NONCE_LENGTH)
    session.start_flow(state=state, nonce=nonce)

    query = urlencode(
        {
            "response_type": "code",
            "client_id": settings.CLIENT_ID,
            "access_type": settings.ACCESS_TYPE,
            "scope": " ".join(scopes),
            "redirect_uri": str(settings.REDIRECT_URI),
            "state": state,
            "nonce": nonce,
        }
    )
    logger.debug(f"build_auth_url - Generated auth URL. State: {state}, Redirect URI: {settings.REDIRECT_URI}")
    return f"{settings.AUTH_URI}?{query}"


# --- Callback ---

def validate_callback_state(session: SessionData, returned_state: typing.Optional[str]) -> None:
    """
    Compares the callback's `state` with the one issued for this session.
    The stored state is consumed either way. On a match the session is marked authorized;
    otherwise StateMismatchError is raised.
    """
    expected_state = session.consume_state()
    if not constant_time_equals(expected_state, returned_state):
        logger.warning(
            f"validate_callback_state - Returned state does not match session state "
            f"(state in session: {'Yes' if expected_state else 'No'})."
        )
        raise StateMismatchError("Authentication state mismatch. Possible CSRF attack.")
    session.authorized = True
    logger.info("validate_callback_state - State matches.")


# --- ID token ---

def get_jwks(jwks_uri: str, refresh: bool = False) -> typing.Dict:
    if refresh:
        JWKS_CACHE.pop(jwks_uri, None)
    if not JWKS_CACHE.get(jwks_uri):
        try:
            response = requests.get(jwks_uri, timeout=10)
            response.raise_for_status()
            JWKS_CACHE[jwks_uri] = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"get_jwks - Error fetching JWKS from {jwks_uri}: {e}")
            raise IDTokenValidationError("Could not retrieve signing keys for the ID token.") from e
    return JWKS_CACHE[jwks_uri]


def get_signing_key(token: str, jwks_uri: str) -> typing.Dict:
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise IDTokenValidationError(f"Invalid ID token header: {e}") from e

    kid = unverified_header.get("kid")
    if not kid:
        raise IDTokenValidationError("ID token header missing 'kid'.")

    # A kid missing from the cached set usually means the provider rotated its keys
    for refresh in (False, True):
        for key in get_jwks(jwks_uri, refresh=refresh).get("keys", []):
            if key.get("kid") == kid:
                return key
        if not refresh:
            logger.info(f"get_signing_key - kid {kid} not in cached JWKS; refetching.")
    raise IDTokenValidationError(f"Unable to find a signing key for the ID token (kid: {kid}).")


def decode_id_token(id_token: str, settings: Settings = default_settings) -> typing.Dict[str, typing.Any]:
    """
    Returns the ID token claims. The signature is verified only when a JWKS URI is configured;
    otherwise the token is trusted as received directly from the token endpoint over TLS.
    """
    try:
        if settings.ID_TOKEN_JWKS_URI:
            signing_key = get_signing_key(id_token, str(settings.ID_TOKEN_JWKS_URI))
            claims = jwt.decode(
                id_token,
                signing_key,
                algorithms=settings.ID_TOKEN_ALGORITHMS,
                audience=settings.CLIENT_ID,
                options={"verify_at_hash": False},
            )
        else:
            claims = jwt.get_unverified_claims(id_token)
    except JWTError as e:
        logger.warning(f"decode_id_token - ID token rejected: {e}")
        raise IDTokenValidationError(f"ID token could not be validated: {e}") from e

    audience = claims.get("aud")
    audiences = audience if isinstance(audience, list) else [audience]
    if settings.CLIENT_ID not in audiences:
        raise IDTokenValidationError("ID token was not issued for this client.")
    if claims.get("iss") not in settings.ID_TOKEN_ISSUERS:
        raise IDTokenValidationError(f"Unexpected ID token issuer: {claims.get('iss')}")
    return claims


def validate_id_token(
    session: SessionData,
    settings: Settings = default_settings,
) -> typing.Optional[typing.Dict[str, typing.Any]]:
    """
    Decodes the session's ID token and checks its `nonce` claim against the nonce
    sent with the authorization request. The stored nonce is cleared afterwards.
    """
    expected_nonce, session.nonce = session.nonce, None
    if not session.id_token:
        logger.info("validate_id_token - No ID token in the token response; nothing to validate.")
        return None

    claims = decode_id_token(session.id_token, settings=settings)
    if settings.ID_TOKEN_VALIDATE_NONCE and not constant_time_equals(expected_nonce, claims.get("nonce")):
        logger.warning("validate_id_token - ID token nonce does not match the nonce issued for this flow.")
        raise IDTokenValidationError("ID token nonce mismatch. Possible replay.")

    session.id_token_claims = claims
    return claims
