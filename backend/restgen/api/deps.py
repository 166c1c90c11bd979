from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from restgen.auth import Identity, TokenService
from restgen.errors import AuthenticationError

security = HTTPBearer(auto_error=False)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


async def get_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    tokens: TokenService = Depends(get_token_service),
) -> Identity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Missing token")
    return tokens.verify(credentials.credentials)
