"""
Installation endpoints.

GET    /installations        — admins: all; users: their own
POST   /installations        — admins
GET    /installations/{id}
PUT    /installations/{id}   — admins, partial update
DELETE /installations/{id}   — admins, refused while referenced
"""

from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ...business import installations as service
from ...business.auth import AuthUser
from ..deps import get_current_user, get_db
from ..schemas import InstallationCreate, InstallationResponse, InstallationUpdate

router = APIRouter()


@router.get("/installations", response_model=List[InstallationResponse])
def list_installations(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return service.list_installations(db, user)


@router.post("/installations", response_model=InstallationResponse, status_code=201)
def create_installation(
    body: InstallationCreate,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    inst = service.create_installation(
        db, user, body.installation_number, body.installation_type,
        distributor_id=body.distributor_id, user_id=body.user_id, name=body.name,
    )
    db.commit()
    return inst


@router.get("/installations/{installation_id}", response_model=InstallationResponse)
def get_installation(
    installation_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return service.get_installation(db, installation_id, user)


@router.put("/installations/{installation_id}", response_model=InstallationResponse)
def update_installation(
    installation_id: str,
    body: InstallationUpdate,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    inst = service.update_installation(
        db, installation_id, user,
        installation_number=body.installation_number,
        installation_type=body.installation_type,
        distributor_id=body.distributor_id,
        user_id=body.user_id,
        name=body.name,
    )
    db.commit()
    return inst


@router.delete("/installations/{installation_id}", status_code=204)
def delete_installation(
    installation_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service.delete_installation(db, installation_id, user)
    db.commit()
    return Response(status_code=204)
