import logging
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import Any, Dict

from storage.object_store import StorageError
from storage.status_store import DocumentNotFound, StatusTransitionError
from utils.response import api_response

logger = logging.getLogger("api.errors")


def install_exception_handlers(app: FastAPI) -> None:
	@app.exception_handler(HTTPException)
	async def http_exception_handler(request: Request, exc: HTTPException):
		# Do not log sensitive details; rely on request middleware for stack traces when needed
		logger.warning(
			"http_exception",
			extra={
				"path": request.url.path,
				"method": request.method,
				"status_code": exc.status_code,
			}
		)
		return api_response(data=None, message=str(exc.detail or "HTTP error"), status_code=exc.status_code)

	@app.exception_handler(RequestValidationError)
	async def validation_exception_handler(request: Request, exc: RequestValidationError):
		errors = exc.errors()
		logger.warning(
			"validation_error",
			extra={
				"path": request.url.path,
				"method": request.method,
				"status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
				"error_count": len(errors),
			}
		)
		content: Dict[str, Any] = {"errors": jsonable_errors(errors)}
		return JSONResponse(
			status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
			content={
				"data": content,
				"message": "Validation error",
				"status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
			},
		)

	@app.exception_handler(DocumentNotFound)
	async def document_not_found_handler(request: Request, exc: DocumentNotFound):
		logger.warning("document_not_found", extra={"path": request.url.path, "status_code": 404})
		return api_response(data=None, message="Document not found", status_code=status.HTTP_404_NOT_FOUND)

	@app.exception_handler(StatusTransitionError)
	async def transition_handler(request: Request, exc: StatusTransitionError):
		logger.warning(
			"status_transition_refused",
			extra={"path": request.url.path, "document_id": exc.document_id, "status_code": 409},
		)
		return api_response(data=None, message="Document is not in a state that allows this", status_code=status.HTTP_409_CONFLICT)

	@app.exception_handler(StorageError)
	async def storage_error_handler(request: Request, exc: StorageError):
		logger.error("storage_error", extra={"path": request.url.path, "error": exc.message, "status_code": 502})
		return api_response(data=None, message="Storage unavailable", status_code=status.HTTP_502_BAD_GATEWAY)

	@app.exception_handler(Exception)
	async def generic_exception_handler(request: Request, exc: Exception):
		# Do not expose internal details to clients
		logger.error(
			"unhandled_exception",
			exc_info=True,
			extra={
				"path": request.url.path,
				"method": request.method,
				"status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
			}
		)
		return api_response(data=None, message="Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def jsonable_errors(errors):
	# pydantic puts the raw exception object in "ctx" for some errors
	return jsonable_encoder([{k: v for k, v in err.items() if k != "ctx"} for err in errors])
