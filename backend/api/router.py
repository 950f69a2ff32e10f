from __future__ import annotations

from fastapi import APIRouter

from api.routes import auth, program_templates, programs, templates


api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# Each route declares its own read/manage gate.
api_router.include_router(programs.router, prefix="/programs", tags=["programs"])
api_router.include_router(program_templates.router, prefix="/programs", tags=["program-templates"])
api_router.include_router(templates.router, prefix="/templates", tags=["templates"])
