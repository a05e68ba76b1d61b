"""
Allocation endpoints.

GET    /allocations        — admins: all; users: allocations touching their installations
POST   /allocations
GET    /allocations/{id}
PUT    /allocations/{id}   — partial update
DELETE /allocations/{id}
"""

from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ...business import allocations as service
from ...business.auth import AuthUser
from ..deps import get_current_user, get_db
from ..schemas import AllocationCreate, AllocationResponse, AllocationUpdate

router = APIRouter()


@router.get("/allocations", response_model=List[AllocationResponse])
def list_allocations(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return service.list_allocations(db, user)


@router.post("/allocations", response_model=AllocationResponse, status_code=201)
def create_allocation(
    body: AllocationCreate,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    allocation = service.create_allocation(db, user, body.generator_id, body.consumer_id, body.quota)
    db.commit()
    return allocation


@router.get("/allocations/{allocation_id}", response_model=AllocationResponse)
def get_allocation(
    allocation_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return service.get_allocation(db, allocation_id, user)


@router.put("/allocations/{allocation_id}", response_model=AllocationResponse)
def update_allocation(
    allocation_id: str,
    body: AllocationUpdate,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    allocation = service.update_allocation(
        db, allocation_id, user,
        generator_id=body.generator_id, consumer_id=body.consumer_id, quota=body.quota,
    )
    db.commit()
    return allocation


@router.delete("/allocations/{allocation_id}", status_code=204)
def delete_allocation(
    allocation_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service.delete_allocation(db, allocation_id, user)
    db.commit()
    return Response(status_code=204)
