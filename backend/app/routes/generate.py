import logging
from datetime import datetime, timezone

import pydantic
from fastapi import APIRouter, Body

from app.middleware.error_handler import ValidationError, format_validation_errors
from app.models.pipeline_spec import ValidationResult
from app.schemas.generate import GenerateSpecRequest, GenerateSpecResponse, GenerationMetadata, ValidateSpecRequest
from app.services import spec_service
from app.services.spec_validator import validate_pipeline_spec

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generate", tags=["generate"])


@router.post("/spec", response_model=GenerateSpecResponse)
async def generate_spec(payload: dict = Body(...)):
    """Generate a validated PipelineSpec, report and artifact list for a project."""
    errors = spec_service.check_generation_request(payload)
    if errors:
        raise ValidationError("Validation failed", detail=errors)

    try:
        request = GenerateSpecRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError("Validation failed", detail=format_validation_errors(e.errors()))

    logger.info(
        "Generating spec for project %r (storage %s, mode %s)",
        request.project_meta.name, request.recommendation.storage, request.recommendation.load_mode,
    )
    result = await spec_service.generate_pipeline_spec(request)

    return GenerateSpecResponse(
        pipeline_spec=result.pipeline_spec,
        report_markdown=result.report_markdown,
        artifacts=result.artifacts,
        metadata=GenerationMetadata(
            generated_at=datetime.now(timezone.utc).isoformat(),
            validation_passed=result.validation_passed,
            attempts=result.attempts,
            fallback_used=result.fallback_used,
        ),
    )


@router.post("/validate", response_model=ValidationResult)
async def validate_spec(body: ValidateSpecRequest):
    """Check a PipelineSpec against the schema and business rules."""
    return validate_pipeline_spec(body.pipeline_spec)
