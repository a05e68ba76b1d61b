"""
Distributor report uploads.

POST /energy-data/upload           — multipart file (.xlsx, .xls, .csv)
GET  /energy-data/upload/history
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from ...business.auth import AuthUser
from ...ingestion.uploader import ingest_report, upload_history
from ..deps import get_db, require_admin
from ..schemas import UploadBatchResponse

router = APIRouter()


@router.post("/energy-data/upload", response_model=UploadBatchResponse, status_code=201)
def upload_energy_data(
    file: UploadFile = File(...),
    distributor_id: Optional[str] = Form(None),
    auto_create: bool = Form(False),
    user: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    content = file.file.read()
    batch = ingest_report(
        db, content, file.filename or "",
        distributor_id=distributor_id, auto_create=auto_create, uploaded_by=user.user_id,
    )
    db.commit()
    return batch


@router.get("/energy-data/upload/history", response_model=List[UploadBatchResponse])
def energy_upload_history(
    limit: int = Query(50, ge=1, le=500),
    user: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return upload_history(db, limit)
