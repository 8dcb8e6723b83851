from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_current_user, get_services
from ..services import Services
from ..validation import Username

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginIn(BaseModel):
    username: Username
    password: str


class ProfileImageIn(BaseModel):
    path: str


@router.post("/login")
async def login(data: LoginIn, services: Services = Depends(get_services)):
    user = await services.auth.login(data.username, data.password)
    services.reset_reports()
    return {"user": user, "welcome": f"Welcome, {user.get('username') or data.username}"}


@router.post("/logout")
async def logout(services: Services = Depends(get_services)):
    services.auth.logout()
    services.reset_reports()
    return {"ok": True}


@router.get("/me")
def me(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return {"user": user, "profile_image": services.auth.get_profile_image()}


@router.put("/me/profile-image")
def set_profile_image(data: ProfileImageIn, user=Depends(get_current_user), services: Services = Depends(get_services)):
    services.auth.set_profile_image(data.path)
    return {"profile_image": data.path}
