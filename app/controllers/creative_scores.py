import asyncio

from fastapi import APIRouter, Query, Request

from app.dependencies import ErrorResponse, http_error, parse_body
from app.models import ErrorCode
from app.services import creative_scores as score_service
from app.services.creative_scores import CreativeScorePayload

router = APIRouter(prefix="/ai", tags=["creative-scores"])


@router.post("/creative-score", responses={400: {"model": ErrorResponse}})
async def save_creative_score(request: Request):
    payload = await parse_body(request, CreativeScorePayload)
    score, created = await asyncio.to_thread(score_service.save_score, payload)
    return {
        "success": True,
        "score": score,
        "message": "Score created" if created else "Score updated",
    }


@router.get("/creative-score", responses={400: {"model": ErrorResponse}})
async def get_creative_score(
    creative_id: str | None = Query(None, alias="creativeId"),
    image_hash: str | None = Query(None, alias="imageHash"),
    creative_ids: str | None = Query(None, alias="creativeIds"),
):
    if creative_ids:
        ids = [i.strip() for i in creative_ids.split(",") if i.strip()]
        scores = await asyncio.to_thread(score_service.get_scores, ids)
        return {"success": True, "scores": scores, "count": len(scores)}

    if not creative_id and not image_hash:
        raise http_error(
            400,
            ErrorCode.BAD_REQUEST,
            "creativeId, imageHash or creativeIds is required",
        )
    score = await asyncio.to_thread(score_service.get_score, creative_id, image_hash)
    return {"success": True, "score": score}


@router.get("/creative-score/stats", responses={400: {"model": ErrorResponse}})
async def creative_score_stats(
    ad_account_id: str | None = Query(None, alias="adAccountId"),
    days_back: int = Query(30, alias="daysBack"),
):
    if not 1 <= days_back <= 365:
        raise http_error(
            400, ErrorCode.BAD_REQUEST, "daysBack must be between 1 and 365"
        )
    stats = await asyncio.to_thread(score_service.score_stats, ad_account_id, days_back)
    return {"success": True, "stats": stats}
