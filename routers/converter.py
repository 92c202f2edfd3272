from fastapi import APIRouter, Depends
import logging

from conversion.base import ConversionOutcome
from conversion.orchestrator import ConversionOrchestrator, validate_notification
from conversion.errors import InvalidNotification
from models.notification import ConvertRequest, UploadNotification
from utils.dependencies import get_rendering_orchestrator
from utils.jwt import require_service_token
from utils.response import api_response

router = APIRouter(tags=["converter"])
logger = logging.getLogger("api.converter")


@router.post("/convert")
def convert(
	request: ConvertRequest,
	service: dict = Depends(require_service_token),
	orchestrator: ConversionOrchestrator = Depends(get_rendering_orchestrator),
):
	"""Rendering service role: convert in-process and write the terminal status.

	The caller learns the result from the status record; the response only
	tells it whether it has to record the failure itself.
	"""
	notification = UploadNotification(
		bucket=request.bucketName,
		name=request.filePath,
		metadata={"documentId": request.documentId, "userId": request.userId},
	)
	try:
		ref = validate_notification(notification, orchestrator.upload_prefix)
	except InvalidNotification as exc:
		logger.warning("convert_request_rejected", extra={"document_id": request.documentId, "reason": exc.message})
		return api_response(data=None, message="Invalid conversion request", status_code=400)

	logger.info("convert_request_accepted", extra={"document_id": ref.document_id, "caller": service.get("sub")})
	outcome = orchestrator.run(ref, conversion_id=request.conversionId)
	if outcome == ConversionOutcome.READY:
		return api_response(data={"outcome": outcome.value}, message="Conversion finished", status_code=200)
	if outcome == ConversionOutcome.MISSING:
		return api_response(data={"outcome": outcome.value}, message="Document not found", status_code=404)
	if outcome == ConversionOutcome.SKIPPED:
		return api_response(data={"outcome": outcome.value}, message="Document already finalized", status_code=409)
	return api_response(data={"outcome": outcome.value}, message="Conversion failed", status_code=500)
