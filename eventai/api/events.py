"""Event routes: CRUD, listing, attachments and popularity analysis."""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Body, Depends, File, Query, Request, UploadFile

from eventai.api.dependencies import (
    get_app_config,
    get_bedrock_service,
    get_caller_email,
    get_comprehend_service,
    get_event_service,
    get_file_processor,
    get_serp_service,
    get_storage_service,
)
from eventai.errors import AppError, NotFoundError, ValidationFailedError, success_response
from eventai.models.config import EventAIConfig
from eventai.models.event import CreateEventRequest, PopularityRequest, UpdateEventRequest
from eventai.models.validation import as_utc, is_valid_email, parse_datetime
from eventai.services import (
    BedrockService,
    ComprehendService,
    EventService,
    FileProcessor,
    SerpService,
    StorageService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/events", tags=["events"])

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
CONTEXT_SEPARATOR = "\n" + "=" * 80 + "\n"


def _event_not_found() -> NotFoundError:
    return NotFoundError("Event not found", code="EVENT_NOT_FOUND")


def _page_window(page: int, limit: int) -> Dict[str, int]:
    page = max(page, 1)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    return {"page": page, "limit": limit, "offset": (page - 1) * limit}


def _pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalItems": total,
        "itemsPerPage": limit,
        "hasNextPage": page < total_pages,
        "hasPreviousPage": page > 1,
    }


class ListFilters:
    """Query-string filters shared by the list routes."""

    def __init__(self,
                 upcoming: bool = Query(False),
                 past: bool = Query(False),
                 ongoing: bool = Query(False),
                 withForecast: bool = Query(False),
                 search: Optional[str] = Query(None),
                 startDate: Optional[datetime] = Query(None),
                 endDate: Optional[datetime] = Query(None),
                 status: Optional[str] = Query(None),
                 venue: Optional[str] = Query(None)):
        self.values = {
            "upcoming": upcoming or None,
            "past": past or None,
            "ongoing": ongoing or None,
            "withForecast": withForecast or None,
            "search": search,
            "startDate": as_utc(startDate),
            "endDate": as_utc(endDate),
            "status": status,
            "venue": venue,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in self.values.items() if value not in (None, "")}


@router.post("")
@router.post("/", include_in_schema=False)
async def create_event(request: Request,
                       body: CreateEventRequest,
                       events: EventService = Depends(get_event_service)):
    event = await events.create_event(body.to_api_dict())
    logger.info(f"Event created: {event['eventId']}")
    return success_response(request, event, "Event created successfully", status_code=201)


@router.get("")
@router.get("/", include_in_schema=False)
async def list_events(request: Request,
                      page: int = Query(1),
                      limit: int = Query(DEFAULT_PAGE_SIZE),
                      userEmail: Optional[str] = Query(None),
                      myEvents: bool = Query(False),
                      filters: ListFilters = Depends(),
                      events: EventService = Depends(get_event_service)):
    window = _page_window(page, limit)
    applied = filters.to_dict()

    if userEmail:
        applied["userEmail"] = userEmail.lower()
    elif myEvents:
        caller = get_caller_email(request)
        if not caller:
            raise AppError(
                "User email required for myEvents filter",
                400,
                details="To use myEvents=true, provide user email in x-user-email header or a bearer token",
                code="MISSING_USER_EMAIL",
            )
        applied["userEmail"] = caller

    result = await events.get_events(window["limit"], window["offset"], applied)

    return success_response(request, {
        "events": result["events"],
        "filters": {
            "userEmail": applied.get("userEmail"),
            "isMyEvents": myEvents,
            "appliedFilters": list(applied),
        },
        "pagination": _pagination(window["page"], window["limit"], result["total"]),
    })


@router.get("/statistics")
async def event_statistics(request: Request, events: EventService = Depends(get_event_service)):
    return success_response(request, await events.get_event_statistics())


@router.get("/user/{user_email}")
async def list_user_events(request: Request,
                           user_email: str,
                           page: int = Query(1),
                           limit: int = Query(DEFAULT_PAGE_SIZE),
                           filters: ListFilters = Depends(),
                           events: EventService = Depends(get_event_service)):
    if not is_valid_email(user_email):
        raise ValidationFailedError(details=[{
            "field": "userEmail", "message": "Valid user email is required", "type": "value_error",
        }])

    window = _page_window(page, limit)
    result = await events.get_events_by_user(user_email.lower(), window["limit"], window["offset"],
                                             filters.to_dict())

    return success_response(request, {
        "events": result["events"],
        "userEmail": user_email.lower(),
        "pagination": _pagination(window["page"], window["limit"], result["total"]),
    })


@router.get("/{event_id}")
async def get_event(request: Request, event_id: str, events: EventService = Depends(get_event_service)):
    event = await events.get_event_by_id(event_id)
    if event is None:
        raise _event_not_found()
    return success_response(request, event)


@router.put("/{event_id}")
async def update_event(request: Request,
                       event_id: str,
                       body: UpdateEventRequest,
                       events: EventService = Depends(get_event_service)):
    existing = await events.get_event_by_id(event_id)
    if existing is None:
        raise _event_not_found()

    # one supplied date is checked against the stored other end
    start = body.date_of_event_start or parse_datetime(existing.get("dateOfEventStart"))
    end = body.date_of_event_end or parse_datetime(existing.get("dateOfEventEnd"))
    if (body.date_of_event_start or body.date_of_event_end) and start and end and end <= start:
        raise ValidationFailedError(details=[{
            "field": "dateOfEventEnd", "message": "End date must be after start date", "type": "value_error",
        }])

    updated = await events.update_event(event_id, body.to_api_dict())
    if updated is None:
        raise _event_not_found()
    return success_response(request, updated, "Event updated successfully")


@router.delete("/{event_id}")
async def delete_event(request: Request, event_id: str, events: EventService = Depends(get_event_service)):
    if await events.get_event_by_id(event_id) is None:
        raise _event_not_found()
    await events.delete_event(event_id)
    return success_response(request, message="Event deleted successfully")


def _context_block(analysis: Dict[str, Any], extracted: str) -> str:
    header = (
        f"=== FILE: {analysis['fileName']} ===\n"
        f"File Type: {analysis['fileType']}\n"
        f"Content Length: {analysis['contentLength']} characters\n"
        f"Processed At: {analysis['processedAt']}\n\n"
    )
    return (
        header
        + "--- AI CONTEXT ---\n\n" + analysis["aiReadyContext"]
        + "--- EXTRACTED CONTENT ---\n\n" + (extracted or "No content extracted")
    )


@router.post("/{event_id}/uploadEventAttachments")
async def upload_event_attachments(request: Request,
                                   event_id: str,
                                   files: Optional[List[UploadFile]] = File(None),
                                   config: EventAIConfig = Depends(get_app_config),
                                   events: EventService = Depends(get_event_service),
                                   storage: StorageService = Depends(get_storage_service),
                                   processor: FileProcessor = Depends(get_file_processor),
                                   comprehend: ComprehendService = Depends(get_comprehend_service)):
    if not files:
        raise AppError("No files provided", 400, code="NO_FILES_UPLOADED")
    if len(files) > config.max_upload_files:
        raise AppError(f"Too many files, at most {config.max_upload_files} per upload", 400,
                       code="TOO_MANY_FILES")

    if await events.get_event_by_id(event_id) is None:
        raise _event_not_found()

    uploads: List[Dict[str, Any]] = []
    analyses: List[Dict[str, Any]] = []
    blocks: List[str] = []
    failures: List[Dict[str, Any]] = []

    for upload in files:
        name = upload.filename or "unnamed"
        mime_type = upload.content_type or "application/octet-stream"
        content = await upload.read()

        validation = processor.validate_file(content, mime_type, name)
        if not validation:
            failures.append({"fileName": name, "errors": validation.errors})
            continue

        try:
            stored = await storage.upload_event_attachment(event_id, content, name, mime_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Attachment upload failed for {name}: {e}")
            failures.append({"fileName": name, "errors": [str(e)]})
            continue

        extracted = await processor.extract_text_content(content, mime_type, name)
        analysis = await comprehend.analyze_event_file(extracted, name, mime_type)
        analysis["warnings"] = validation.warnings

        uploads.append(stored)
        analyses.append(analysis)
        blocks.append(_context_block(analysis, extracted))

    if not uploads:
        raise AppError("All files failed to upload", 400, details=failures, code="UPLOAD_FAILED")

    updated = await events.add_event_attachments(
        event_id,
        [stored["signedUrl"] for stored in uploads],
        [stored["originalName"] for stored in uploads],
        CONTEXT_SEPARATOR.join(blocks),
    )
    if updated is None:
        raise _event_not_found()

    message = f"Successfully uploaded {len(uploads)} file(s) and analyzed content"
    warnings = None
    if failures:
        message += f" ({len(failures)} file(s) failed)"
        warnings = {"failedFiles": len(failures), "errors": failures}

    return success_response(request, {
        "eventId": event_id,
        "uploadedFiles": len(uploads),
        "totalAttachments": len(updated["attachmentUrls"]),
        "attachmentFilenames": updated["attachmentFilenames"],
        "uploads": uploads,
        "analysis": analyses,
        "event": updated,
    }, message, status_code=201, warnings=warnings)


@router.get("/{event_id}/attachments/supported-types")
async def supported_attachment_types(request: Request,
                                     event_id: str,
                                     processor: FileProcessor = Depends(get_file_processor)):
    return success_response(request, processor.get_supported_file_types())


@router.post("/{event_id}/popularity")
async def analyze_event_popularity(request: Request,
                                   event_id: str,
                                   body: Optional[PopularityRequest] = Body(None),
                                   events: EventService = Depends(get_event_service),
                                   serp: SerpService = Depends(get_serp_service),
                                   bedrock: BedrockService = Depends(get_bedrock_service)):
    event = await events.get_event_by_id(event_id)
    if event is None:
        raise _event_not_found()

    popularity = body.model_dump(exclude_none=True) if body else {}
    if not popularity:
        popularity = event.get("popularity") or {}

    nearby = await serp.search_nearby_events(event)
    extent = await bedrock.analyze_popularity({
        "name": event.get("name"),
        "venue": event.get("venue"),
        "dateOfEventStart": event.get("dateOfEventStart"),
        "popularity": popularity,
        "nearbyEvents": nearby,
    })

    await events.update_event_popularity(event_id, popularity, extent)

    return success_response(request, {
        "eventId": event_id,
        "popularity": popularity,
        "popularityExtent": extent,
        "nearbyEvents": nearby,
    }, "Popularity analysis completed")
