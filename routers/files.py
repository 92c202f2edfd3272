from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from storage.object_store import ObjectNotFound, ObjectStore, StorageError
from utils.dependencies import get_object_store

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/{object_path:path}")
def get_public_file(object_path: str, objects: ObjectStore = Depends(get_object_store)):
	"""Serve objects of the local store that were made public."""
	try:
		info = objects.stat(object_path)
		if not info.public:
			raise HTTPException(status_code=404, detail="File not found")
		content = objects.get(object_path)
	except ObjectNotFound:
		raise HTTPException(status_code=404, detail="File not found")
	except StorageError:
		# Malformed paths are reported like missing files
		raise HTTPException(status_code=404, detail="File not found")
	headers = {"Cache-Control": info.cache_control} if info.cache_control else None
	return Response(content=content, media_type=info.content_type, headers=headers)
