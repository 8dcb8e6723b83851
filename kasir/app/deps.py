from fastapi import Depends, Request

from .errors import AuthError
from .services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(services: Services = Depends(get_services)) -> dict:
    user = services.auth.current_user()
    if not user:
        raise AuthError("login required")
    return user
