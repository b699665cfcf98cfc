"""
AI Index endpoints: generate, fetch latest, upload to blob storage, verify.
"""

from fastapi import APIRouter, Depends, Query

from worksy.api.deps import get_index_builder
from worksy.schemas.schemas import IndexResponse, SessionRequest, UploadResponse, VerifyResponse
from worksy.services.index_builder import IndexBuilder

router = APIRouter(prefix="/api/index", tags=["index"])


@router.post("/generate", response_model=IndexResponse)
async def generate_index(body: SessionRequest, builder: IndexBuilder = Depends(get_index_builder)):
    """Seal a new AI Index for the session's current transcript."""
    sealed = await builder.generate(body.session_id)
    return IndexResponse(id=sealed.id, hash=sealed.hash, hmac=sealed.hmac, index=sealed.document)


@router.get("/latest", response_model=IndexResponse)
async def latest_index(
    session_id: str | None = Query(None, alias="sessionId"),
    builder: IndexBuilder = Depends(get_index_builder),
):
    record = await builder.latest(session_id)
    return IndexResponse(id=record.id, hash=record.hash, hmac=record.hmac, index=record.index_json)


@router.post("/upload", response_model=UploadResponse)
async def upload_index(body: SessionRequest, builder: IndexBuilder = Depends(get_index_builder)):
    result = await builder.upload(body.session_id)
    return UploadResponse(url=result.url, path=result.path)


@router.get("/verify", response_model=VerifyResponse)
async def verify_index(
    index_id: str | None = Query(None, alias="id"),
    builder: IndexBuilder = Depends(get_index_builder),
):
    """Recompute the fingerprint. ``ok=false`` means the stored record was altered."""
    verification = await builder.verify(index_id)
    return VerifyResponse(
        ok=verification.ok,
        hash_ok=verification.hash_ok,
        hmac_ok=verification.hmac_ok,
        policy_version=verification.policy_version,
        config_version=verification.config_version,
    )
