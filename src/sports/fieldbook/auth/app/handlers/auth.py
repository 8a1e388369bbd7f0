import logging
from typing import Final, Optional

from aiohttp import web
from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

from sports.fieldbook.auth.app.config import SessionManagerAppKey
from sports.fieldbook.auth.errors import BadRequest, Forbidden, Unauthenticated
from sports.fieldbook.auth.security.federated import profile_from_google_userinfo
from sports.fieldbook.auth.security.sessions import SignupProfile
from sports.fieldbook.auth.security.tokens import Principal

logger = logging.getLogger(__name__)

PrincipalKey: Final = web.RequestKey("principal", Principal)
"""RequestKey for the principal resolved by the authorization middleware"""


class SignupInput(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(min_length=1, max_length=128)

    @field_validator("password")
    def password_strength_check(cls, v: str) -> str:
        if not any(c.islower() for c in v) or not any(c.isupper() for c in v):
            raise ValueError("password needs upper and lower case letters")
        if not any(c.isdigit() for c in v):
            raise ValueError("password needs a digit")
        if all(c.isalnum() for c in v):
            raise ValueError("password needs a symbol")
        return v


class LoginInput(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    remember_me: bool = False


class RefreshTokenInput(BaseModel):
    refresh_token: str = Field(min_length=1)
    refresh_token_id: str = Field(min_length=1)


class GoogleUserinfoInput(BaseModel):
    """The userinfo document Google returns once its OAuth handshake completes."""

    sub: Optional[str] = None
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None


async def read_body(request: web.Request, model):
    try:
        data = await request.read()
        return model.model_validate_json(data)
    except ValidationError as e:
        raise BadRequest.invalid_body(
            "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
        ) from e
    except OSError as e:
        raise BadRequest.invalid_body() from e


def current_principal(request: web.Request) -> Principal:
    principal: Optional[Principal] = request.get(PrincipalKey)
    if principal is None:
        raise Forbidden.principal_missing()
    return principal


async def handle_signup(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]
    signup_input: SignupInput = await read_body(request, SignupInput)

    token_pair = await session_manager.sign_up(
        SignupProfile(**signup_input.model_dump())
    )
    user = await session_manager.get_principal_from_token(token_pair.access_token)
    return web.json_response({**token_pair.model_dump(), "user": user})


async def handle_login(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]
    login_input: LoginInput = await read_body(request, LoginInput)

    principal = await session_manager.validate_credentials(
        login_input.email, login_input.password
    )
    if principal is None:
        raise Unauthenticated.invalid_credentials()

    token_pair = await session_manager.login(principal, login_input.remember_me)
    user = await session_manager.directory.find_by_id_or_throw(principal.id)
    return web.json_response({**token_pair.model_dump(), "user": user.view()})


async def handle_google_callback(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]
    userinfo: GoogleUserinfoInput = await read_body(request, GoogleUserinfoInput)

    profile = profile_from_google_userinfo(userinfo.model_dump())
    principal = await session_manager.validate_provided_identity(profile)

    token_pair = await session_manager.login(principal, remember_me=False)
    user = await session_manager.directory.find_by_id_or_throw(principal.id)
    return web.json_response({**token_pair.model_dump(), "user": user.view()})


async def handle_refresh_token(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]
    refresh_token_input: RefreshTokenInput = await read_body(
        request, RefreshTokenInput
    )

    token_pair = await session_manager.rotate_tokens(
        refresh_token_input.refresh_token, refresh_token_input.refresh_token_id
    )
    return web.json_response(token_pair.model_dump())


async def handle_me(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]
    principal = current_principal(request)
    user = await session_manager.directory.find_by_id_or_throw(principal.id)
    return web.json_response(user.view())


async def handle_test_jwt(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]
    principal = current_principal(request)
    user = await session_manager.directory.find_by_id_or_throw(principal.id)
    return web.Response(text=f"Hello {user.first_name} {user.last_name}!")


async def handle_test_role(request: web.Request) -> web.Response:
    principal = current_principal(request)
    return web.Response(text=f"Hello {principal.role.value}!")
