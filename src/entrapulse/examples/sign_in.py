"""
Sign in to Microsoft Entra ID and print the permissions the token carries.

Set ENTRA_CLIENT_ID, ENTRA_TENANT_ID and ENTRA_SCOPES (for example
"User.Read Directory.Read.All"). For app-only tokens also set
ENTRA_CLIENT_SECRET and ENTRA_USE_CLIENT_CREDENTIALS=true.

Delegated sign-in opens the system browser and listens on the redirect URI,
so register a loopback redirect with a free port, e.g.
ENTRA_REDIRECT_URI=http://localhost:8400
"""

import asyncio
import logging

from entrapulse.auth.models.config import AuthConfig
from entrapulse.auth.models.errors import AuthError, UserCancelledError
from entrapulse.auth.session import AuthSessionManager


async def main():
    manager = AuthSessionManager(AuthConfig.from_env())

    try:
        token = await asyncio.wait_for(manager.sign_in(), timeout=300)
        logging.info(f"Token expires on {token.expires_on.isoformat()}")

        info = await manager.get_authentication_info_with_token()
        logging.info(f"Mode: {info.mode.value}")
        logging.info(f"Configured scopes: {info.configured_scopes}")
        logging.info(f"Granted permissions: {info.actual_permissions}")
    except UserCancelledError:
        logging.info("Sign-in cancelled")
    except AuthError as e:
        logging.error(f"Sign-in failed: {e}")
    finally:
        await manager.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
