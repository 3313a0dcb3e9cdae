from fastapi import APIRouter
from sendersync.api.v1.endpoints import auth, connections, domains, addresses, sheets

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(auth.router)
api_router.include_router(connections.router)
api_router.include_router(domains.router)
api_router.include_router(addresses.router)
api_router.include_router(sheets.router)
