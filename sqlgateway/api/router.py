from fastapi import APIRouter
from sqlgateway.api.endpoints import query, schema

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(query.router)
api_router.include_router(schema.router)
