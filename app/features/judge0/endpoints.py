from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException

from app.features.judge0.schemas import Judge0Status, LanguageInfo
from app.features.judge0.service import Judge0Error, judge0_service

router = APIRouter(prefix="/judge0", tags=["judge0"])


@router.get("/languages", response_model=List[LanguageInfo])
async def get_supported_languages():
    try:
        return await judge0_service.get_languages()
    except Judge0Error as exc:
        raise HTTPException(status_code=502, detail={"error_code": "E_JUDGE0", "message": f"Failed to fetch languages: {exc}"}) from exc


@router.get("/statuses", response_model=List[Judge0Status])
async def get_submission_statuses():
    try:
        return await judge0_service.get_statuses()
    except Judge0Error as exc:
        raise HTTPException(status_code=502, detail={"error_code": "E_JUDGE0", "message": f"Failed to fetch statuses: {exc}"}) from exc


@router.get("/test")
async def test_judge0_connection():
    try:
        langs = await judge0_service.get_languages()
        return {"status": "connected", "count": len(langs)}
    except Judge0Error as exc:
        raise HTTPException(status_code=502, detail={"error_code": "E_JUDGE0", "message": f"Connectivity failed: {exc}"}) from exc
