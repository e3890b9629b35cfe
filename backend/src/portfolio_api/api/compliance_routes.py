# compliance_routes.py
# GDPR/CCPA endpoints: consent, export, erasure, opt-out, disclosure.

from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..errors import ServiceError, to_http_exception
from ..services.compliance_service import ComplianceService
from .dependencies import get_compliance_service
from .middleware import request_info
from .models.privacy_models import ConsentRequest, ConsentStatus

router = APIRouter(prefix="/api/visitors/compliance", tags=["Compliance"])


@router.post("/consent", response_model=ConsentStatus)
def submit_consent(
    payload: ConsentRequest,
    request: Request,
    service: ComplianceService = Depends(get_compliance_service),
) -> ConsentStatus:
    try:
        service.process_consent_request(
            payload.session_hash,
            payload.categories,
            ip_address=request_info(request).client_ip,
            user_agent=request.headers.get("user-agent"),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return ConsentStatus(session_hash=payload.session_hash, **service.get_consent_records(payload.session_hash))


@router.get("/consent/{session_hash}", response_model=ConsentStatus)
def get_consent(
    session_hash: str,
    service: ComplianceService = Depends(get_compliance_service),
) -> ConsentStatus:
    return ConsentStatus(session_hash=session_hash, **service.get_consent_records(session_hash))


@router.post("/export/{session_hash}")
def export_data(
    session_hash: str,
    service: ComplianceService = Depends(get_compliance_service),
) -> Response:
    if not service.config_service.get_config().compliance.gdpr.allow_portability:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Data export is disabled"},
        )
    try:
        export = service.export_user_data(session_hash)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return Response(
        content=json.dumps(export, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": "attachment; filename=user-data-export.json"},
    )


@router.delete("/data/{session_hash}")
def delete_data(
    session_hash: str,
    request: Request,
    service: ComplianceService = Depends(get_compliance_service),
) -> Dict[str, Any]:
    try:
        deleted = service.delete_user_data(
            session_hash,
            ip_address=request_info(request).client_ip,
            user_agent=request.headers.get("user-agent"),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return {"success": True, "message": "Your data has been deleted", "deleted": deleted}


@router.post("/optout/{session_hash}", status_code=status.HTTP_200_OK)
def opt_out(
    session_hash: str,
    request: Request,
    service: ComplianceService = Depends(get_compliance_service),
) -> Dict[str, Any]:
    try:
        service.handle_opt_out(
            session_hash,
            ip_address=request_info(request).client_ip,
            user_agent=request.headers.get("user-agent"),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return {"success": True, "message": "You have been opted out of data collection"}


@router.get("/disclosure")
def data_disclosure(service: ComplianceService = Depends(get_compliance_service)) -> Dict[str, Any]:
    return service.get_data_disclosure()


@router.get("/privacy-policy")
def privacy_policy(service: ComplianceService = Depends(get_compliance_service)) -> Dict[str, Any]:
    return service.privacy_policy()
