import os
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers.documents import router as documents_router
from routers.uploads import router as uploads_router
from routers.converter import router as converter_router
from routers.viewer import router as viewer_router
from routers.files import router as files_router
from utils.config import get_settings
from utils.logging_config import init_logging, install_request_logging
from utils.exception_handlers import install_exception_handlers

app = FastAPI(
    title="Docsflip API",
    description="PDF upload, asynchronous page-image conversion and the public flipbook viewer backend.",
    version="1.0.0"
)

# Initialize logging and request middleware
init_logging()
install_request_logging(app)
install_exception_handlers(app)

app.include_router(documents_router)
app.include_router(uploads_router)
app.include_router(converter_router)
app.include_router(viewer_router)
app.include_router(files_router)

# CORS settings (adjust origins as needed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Docsflip API"}


@app.get("/health")
def health():
    return {"status": "ok", "strategy": get_settings().conversion_strategy}
