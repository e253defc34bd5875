from fastapi import APIRouter
from casegen.api.routes import generations, health, images, projects

api_router = APIRouter()

# Include all route modules
api_router.include_router(health.router)
api_router.include_router(images.router)
api_router.include_router(generations.router)
api_router.include_router(projects.router)
