"""Detailed vulnerability report endpoint."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from vulnrelay.dependencies import get_engine
from vulnrelay.services.collection_engine import CollectionEngine
from vulnrelay.services.vulnerability_report import (
    MAX_IMAGE_FILTER_LENGTH,
    MAX_LIMIT,
    VALID_SEVERITIES,
    build_report,
)
from vulnrelay.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/vulnerabilities")
async def get_vulnerabilities(
    image: str = Query("", description="Only images whose URI contains this text"),
    severity: str = Query("", description="Only findings of this severity"),
    limit: str = Query("", description="Maximum findings per image (0 = no limit)"),
    pretty: str = Query("", description="Indent the JSON output when set"),
    engine: CollectionEngine = Depends(get_engine),
) -> Response:
    """Get CVE, package and fix details for every monitored image.

    Query parameters are validated by hand so that errors come back as 400
    with a plain explanation rather than a validation error document.
    """
    image_filter = image.strip()
    severity_filter = severity.strip().upper()
    limit_param = limit.strip()

    if severity_filter and severity_filter not in VALID_SEVERITIES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid severity filter. Must be one of: {', '.join(VALID_SEVERITIES)}",
        )

    max_findings = 0
    if limit_param:
        try:
            max_findings = int(limit_param)
        except ValueError:
            max_findings = -1
        if max_findings < 0:
            raise HTTPException(
                status_code=400, detail="Invalid limit parameter. Must be a positive integer"
            )
        if max_findings > MAX_LIMIT:
            raise HTTPException(
                status_code=400,
                detail=f"Limit parameter too large. Maximum allowed is {MAX_LIMIT}",
            )

    if len(image_filter) > MAX_IMAGE_FILTER_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Image filter too long. Maximum allowed is {MAX_IMAGE_FILTER_LENGTH} characters",
        )

    data, collected_at = engine.get_snapshot()

    logger.debug(
        f"Processing vulnerabilities request: image={sanitize_log_message(image_filter)!r}, "
        f"severity={severity_filter!r}, limit={max_findings}, total_images={len(data)}"
    )

    report = build_report(
        data,
        collected_at,
        image_filter=image_filter,
        severity_filter=severity_filter,
        limit=max_findings,
    )

    content = report.model_dump(mode="json")

    logger.info(
        f"Served vulnerabilities response: {len(report.images)} images, "
        f"{report.summary.total_vulnerabilities} vulnerabilities, "
        f"{len(report.summary.top_cves)} top CVEs"
    )

    if pretty:
        return Response(
            content=json.dumps(content, indent=2) + "\n", media_type="application/json"
        )
    return JSONResponse(content=content)
