from typing import Annotated

from fastapi import Depends, Request

from videogen.config import Settings
from videogen.services.job_registry import JobRegistry
from videogen.services.render_orchestrator import RenderOrchestrator
from videogen.services.storage_service import LocalStorageService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> RenderOrchestrator:
    return request.app.state.orchestrator


def get_registry(request: Request) -> JobRegistry:
    return request.app.state.orchestrator.registry


def get_storage(request: Request) -> LocalStorageService:
    return request.app.state.storage


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Orchestrator = Annotated[RenderOrchestrator, Depends(get_orchestrator)]
Registry = Annotated[JobRegistry, Depends(get_registry)]
Storage = Annotated[LocalStorageService, Depends(get_storage)]
