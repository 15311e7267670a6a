"""Central API router registration."""

from fastapi import APIRouter

from onesaas.api import algorithms, api_keys, auth, subscriptions, users

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(subscriptions.services_router)
api_router.include_router(subscriptions.router)
api_router.include_router(api_keys.router)
api_router.include_router(algorithms.router)
