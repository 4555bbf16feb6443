"""
Small command-line client for a notes API behind token authentication.

Reads TOKENGUARD_* settings plus NOTES_ACCESS_TOKEN / NOTES_REFRESH_TOKEN from
the environment (or a .env file) and lists the user's notes. Expired access
tokens are renewed automatically.
"""

import asyncio
import json
import logging
import os

from dotenv import load_dotenv

from tokenguard.auth.models.errors import ClientError, ForcedLogoutError
from tokenguard.auth.storage import JsonFileCredentialStore
from tokenguard.client.authenticated_client import AuthenticatedClient
from tokenguard.config import ClientSettings


class PrintingObserver:
    def on_forced_logout(self, return_path: str) -> None:
        print(f"Session expired. Log in again, then return to {return_path}")


async def main():
    settings = ClientSettings.from_env()
    store = JsonFileCredentialStore(
        os.getenv("NOTES_CREDENTIALS_FILE", ".notes-credentials.json")
    )

    async with AuthenticatedClient.from_settings(
        settings, store=store, observer=PrintingObserver()
    ) as client:
        # Seed the store on first use.
        access_token = os.getenv("NOTES_ACCESS_TOKEN")
        if access_token and store.get(settings.access_token_key) is None:
            client.set_credentials(access_token, os.getenv("NOTES_REFRESH_TOKEN"))

        try:
            notes = await client.get("/notes", params={"page": 1})
        except ForcedLogoutError as e:
            logging.error(f"{e.message}: {e.login_url}")
            return
        except ClientError as e:
            logging.error(f"Request failed: {e.message}")
            return

        print(json.dumps(notes, indent=2))


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
