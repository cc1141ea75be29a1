from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum
from starlette.middleware.base import BaseHTTPMiddleware

from donorconnect.api import routers
from donorconnect.core.config import get_settings
from donorconnect.core.logging_config import configure_logging

configure_logging()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS, PATCH",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Amz-Date, X-Api-Key, X-Amz-Security-Token",
    "Access-Control-Allow-Credentials": "true",
}

app = FastAPI(
    title="DonorConnect API",
    root_path=get_settings().API_ROOT_PATH
)

# CORS Middleware for FastAPI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your frontend domain(s)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# API Gateway strips the CORS middleware's headers from error responses
class CORSHeaderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

app.add_middleware(CORSHeaderMiddleware)

@app.options("/{full_path:path}")
async def options_handler(request: Request, full_path: str):
    return JSONResponse(content={}, headers=CORS_HEADERS)

@app.get("/")
def read_root():
    return {"message": "Welcome to the DonorConnect API"}


app.include_router(routers.router)

handler = Mangum(app)
