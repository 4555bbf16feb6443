from tokenguard.auth.storage import CredentialStore
from tokenguard.config import ClientSettings
from tokenguard.transport.base import HttpRequest


class RequestAuthenticator:
    """Attaches the current access token to outgoing requests.

    Requests are never mutated; a copy with the Authorization header set is
    returned instead. A missing token is not an error: the request goes out
    unauthenticated and the server decides.
    """

    def __init__(self, store: CredentialStore, settings: ClientSettings):
        self.store = store
        self.settings = settings

    def attach(self, request: HttpRequest) -> HttpRequest:
        token = self.store.get(self.settings.access_token_key)
        if not token:
            return request
        return self.attach_token(request, token)

    def attach_token(self, request: HttpRequest, token: str) -> HttpRequest:
        return request.with_header(
            "Authorization", f"{self.settings.token_type} {token}"
        )
