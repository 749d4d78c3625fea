"""
api/errors.py — Error Responses

Every failure leaves the API as {"code": ..., "message": ..., ...context}.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.errors import BharatIDError, InvalidInput

logger = logging.getLogger("bharatid.api")


async def bharatid_error_handler(request: Request, exc: BharatIDError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} → {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = InvalidInput("Request body failed validation.", errors=jsonable_encoder(exc.errors()))
    logger.warning(f"{request.method} {request.url.path} → 400 {error.code}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(BharatIDError, bharatid_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
