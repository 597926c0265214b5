"""Bastion HTTP API — scanning, firewall, detections, allowlist, audit, geolocation."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ..bridge.contracts import (
    AllowlistEntryIn,
    AllowlistEntryOut,
    AuditEventPage,
    DetectionPage,
    DetectionStats,
    FirewallSnapshot,
    GeoLocation,
    HealthResponse,
    ReconcileRequest,
    ReconcileResult,
    ScanResult,
    StatusUpdate,
    StatusUpdateResult,
    UnblockRequest,
    UnblockResult,
)
from ..dependencies import get_app_config, get_logon_guard, get_service
from ..middleware.error_handler import status_for_kind
from ..models.detected_ip import STATUSES
from ..utils import ip_validator

router = APIRouter(prefix="/api/v1", tags=["bastion"])


def _apply_status(response: Response, result) -> None:
    if not result.success:
        response.status_code = status_for_kind(result.error_kind)


# --- Scanning / firewall ---

@router.post("/scan", response_model=ScanResult)
async def trigger_scan(response: Response, service=Depends(get_service)):
    """Run one scan of the Security log now."""
    result = await service.run_scan()
    _apply_status(response, result)
    return result


@router.post("/firewall/reconcile", response_model=ReconcileResult)
async def reconcile_firewall(
    response: Response,
    body: Optional[ReconcileRequest] = None,
    service=Depends(get_service),
):
    """Block the given IPs, or every pending detection when ``ips`` is omitted."""
    result = await service.reconcile_firewall(body.ips if body else None)
    _apply_status(response, result)
    return result


@router.post("/firewall/unblock", response_model=UnblockResult)
async def unblock(body: UnblockRequest, response: Response, service=Depends(get_service)):
    result = await service.unblock(body.ips)
    _apply_status(response, result)
    return result


@router.get("/firewall", response_model=FirewallSnapshot)
async def firewall_snapshot(response: Response, service=Depends(get_service)):
    snapshot = await service.get_firewall_snapshot()
    if snapshot.error_kind is not None:
        response.status_code = status_for_kind(snapshot.error_kind)
    return snapshot


# --- Detections ---

@router.get("/detections", response_model=DetectionPage)
async def list_detections(
    response: Response,
    status: Optional[str] = Query(None),
    threat_level: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("last_seen"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    service=Depends(get_service),
):
    if status is not None and status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {list(STATUSES)}")
    page = await service.get_detection_snapshot(
        status=status,
        threat_level=threat_level,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    if page.error_kind is not None:
        response.status_code = status_for_kind(page.error_kind)
    return page


@router.get("/detections/stats", response_model=DetectionStats)
async def detection_stats(service=Depends(get_service)):
    return await service.get_detection_stats()


@router.patch("/detections/{ip}/status", response_model=StatusUpdateResult)
async def update_detection_status(
    ip: str, body: StatusUpdate, response: Response, service=Depends(get_service)
):
    result = await service.set_detection_status(ip, body.status)
    if not result.success:
        response.status_code = 404 if result.error == "unknown IP" else status_for_kind(result.error_kind)
    return result


# --- Allowlist ---

@router.get("/allowlist", response_model=list[AllowlistEntryOut])
async def list_allowlist(
    include_expired: bool = Query(True),
    service=Depends(get_service),
):
    return await service.list_allowlist(include_expired=include_expired)


@router.post("/allowlist", response_model=AllowlistEntryOut, status_code=201)
async def add_allowlist_entry(body: AllowlistEntryIn, service=Depends(get_service)):
    return await service.add_allowlist_entry(body)


@router.delete("/allowlist/{entry_id}", status_code=204)
async def remove_allowlist_entry(entry_id: int, service=Depends(get_service)):
    if not await service.remove_allowlist_entry(entry_id):
        raise HTTPException(status_code=404, detail="Allowlist entry not found")
    return Response(status_code=204)


# --- Audit / geolocation / health ---

@router.get("/events", response_model=AuditEventPage)
async def recent_events(
    source_ip: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service=Depends(get_service),
):
    return await service.recent_events(source_ip=source_ip, limit=limit, offset=offset)


@router.get("/geo/{ip}", response_model=GeoLocation)
async def geolocate(ip: str, service=Depends(get_service)):
    if not ip_validator.is_valid(ip):
        raise HTTPException(status_code=400, detail=f"Invalid IP address: {ip}")
    location = await service.lookup_location(ip)
    if location is None:
        raise HTTPException(status_code=404, detail="No location available")
    return location


@router.get("/health", response_model=HealthResponse)
async def health(service=Depends(get_service), guard=Depends(get_logon_guard)):
    last = service.scanner.last_result
    modules = {}
    if guard is not None:
        modules[guard.name] = await guard.health_check()
    return HealthResponse(
        status="healthy",
        app=get_app_config().app_name,
        scan_running=service.scanner.running,
        last_scan=last.timestamp if last else None,
        modules=modules,
    )
