from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from models.response import APIResponse


def api_response(data=None, message="Success", status_code=200):
	# Records and other models are serialized in JSON mode (datetimes, enums)
	if isinstance(data, BaseModel):
		data = data.model_dump(mode="json")
	return JSONResponse(
		status_code=status_code,
		content=jsonable_encoder(APIResponse(data=data, message=message, status_code=status_code)),
	)
