"""Snipe lifecycle API routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from tablesnipe.errors import TablesnipeError
from tablesnipe.service import SnipeService
from tablesnipe.web.deps import get_service, http_error
from tablesnipe.web.schemas import (
    SnipeCancelResponse,
    SnipeCreateRequest,
    SnipeListResponse,
    SnipeOut,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=SnipeOut, status_code=201)
async def create(body: SnipeCreateRequest, service: SnipeService = Depends(get_service)):
    try:
        snipe = service.create_snipe(body.to_request())
    except ValidationError as e:
        raise HTTPException(422, str(e))
    except TablesnipeError as e:
        raise http_error(e)
    return SnipeOut.from_snipe(snipe, service.is_scheduled(snipe.id))


@router.get("", response_model=SnipeListResponse)
async def list_snipes(status: str | None = None, service: SnipeService = Depends(get_service)):
    try:
        snipes = service.list_snipes(status)
    except TablesnipeError as e:
        raise http_error(e)
    return SnipeListResponse(
        snipes=[SnipeOut.from_snipe(s, service.is_scheduled(s.id)) for s in snipes]
    )


@router.get("/{snipe_id}", response_model=SnipeOut)
async def get_snipe(snipe_id: str, service: SnipeService = Depends(get_service)):
    try:
        snipe = service.get_snipe(snipe_id)
    except TablesnipeError as e:
        raise http_error(e)
    return SnipeOut.from_snipe(snipe, service.is_scheduled(snipe.id))


@router.delete("/{snipe_id}", response_model=SnipeCancelResponse)
async def cancel(snipe_id: str, service: SnipeService = Depends(get_service)):
    try:
        snipe = service.cancel_snipe(snipe_id)
    except TablesnipeError as e:
        raise http_error(e)
    return SnipeCancelResponse(cancelled=True, snipe=SnipeOut.from_snipe(snipe))
