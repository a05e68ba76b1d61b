"""
Distributor endpoints.

GET    /distributors        — any authenticated caller
POST   /distributors        — admins
GET    /distributors/{id}
PUT    /distributors/{id}   — admins, partial update
DELETE /distributors/{id}   — admins, refused while referenced
"""

from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ...business import distributors as service
from ...business.auth import AuthUser
from ..deps import get_current_user, get_db
from ..schemas import DistributorCreate, DistributorResponse, DistributorUpdate

router = APIRouter()


@router.get("/distributors", response_model=List[DistributorResponse])
def list_distributors(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return service.list_distributors(db)


@router.post("/distributors", response_model=DistributorResponse, status_code=201)
def create_distributor(
    body: DistributorCreate,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    distributor = service.create_distributor(
        db, user, body.name, body.kwh_rate, default_discount=body.default_discount,
    )
    db.commit()
    return distributor


@router.get("/distributors/{distributor_id}", response_model=DistributorResponse)
def get_distributor(
    distributor_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return service.get_distributor(db, distributor_id)


@router.put("/distributors/{distributor_id}", response_model=DistributorResponse)
def update_distributor(
    distributor_id: str,
    body: DistributorUpdate,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    distributor = service.update_distributor(
        db, distributor_id, user,
        name=body.name, kwh_rate=body.kwh_rate, default_discount=body.default_discount,
    )
    db.commit()
    return distributor


@router.delete("/distributors/{distributor_id}", status_code=204)
def delete_distributor(
    distributor_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service.delete_distributor(db, distributor_id, user)
    db.commit()
    return Response(status_code=204)
