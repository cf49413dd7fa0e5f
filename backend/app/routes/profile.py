import logging

from fastapi import APIRouter, File, Form, UploadFile

from app.middleware.input_guard import sanitize_filename
from app.services import profile_service, spec_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["profile"])

XML_ANALYSIS_UNAVAILABLE = "LLM analysis not available for this file type"


@router.post("/profile")
async def profile_upload(
    file: UploadFile = File(...),
    project: str | None = Form(None),
    original_size: int | None = Form(None, alias="originalSize"),
    sampled_bytes: int | None = Form(None, alias="sampledBytes"),
    is_full_file: str = Form("false", alias="isFullFile"),
):
    """Profile an uploaded sample and, for CSV/JSON, ask the model for a deep analysis."""
    mime = profile_service.resolve_mime_type(file.content_type, file.filename)
    data = await file.read()

    original = original_size or len(data)
    profile_service.check_file_size(mime, original)
    sample_info = profile_service.build_sample_info(
        original, sampled_bytes or len(data), is_full_file.lower() == "true"
    )

    profiled = profile_service.profile_file(data, mime, sample_info)
    file_profile = profiled.profile.model_dump(by_alias=True)

    if mime not in (profile_service.CSV_MIME, profile_service.JSON_MIME):
        return {"fileProfile": file_profile, "error": XML_ANALYSIS_UNAVAILABLE}

    name, description = profile_service.parse_project_meta(project)
    sample_rows = profile_service.extract_sample_data(profiled.text, mime)
    logger.info("Starting deep analysis of %s with %d preview rows", file.filename, len(sample_rows))

    analysis = await spec_service.analyze_file(
        profiled.profile, name, description, sample_rows, sanitize_filename(file.filename)
    )
    return {**analysis, "fileProfile": file_profile}
