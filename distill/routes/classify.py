"""Classification routes."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from distill.database import get_db
from distill.schemas.classify import ClassifyRequest, ClassifyResult, ClassifyRunResponse, LastClassifyStats
from distill.services.classify import classify_batch, get_classify_run, get_last_classify_stats

logger = logging.getLogger(__name__)

router = APIRouter(tags=["classify"])


@router.post("/classify", response_model=ClassifyResult)
def classify(data: ClassifyRequest, db: Session = Depends(get_db)):
    """Label a batch; runs to completion in the request."""
    return classify_batch(
        db,
        import_batch_id=data.import_batch_id,
        model=data.model,
        prompt_version_id=data.prompt_version_id,
        mode=data.mode,
    )


@router.get("/classify-runs/{classify_run_id}", response_model=ClassifyRunResponse)
def get_classify_run_status(classify_run_id: str, db: Session = Depends(get_db)):
    return get_classify_run(db, classify_run_id)


@router.get("/import-batches/{import_batch_id}/last-classify", response_model=LastClassifyStats)
def last_classify(import_batch_id: str, model: str, prompt_version_id: str, db: Session = Depends(get_db)):
    return get_last_classify_stats(db, import_batch_id, model, prompt_version_id)
