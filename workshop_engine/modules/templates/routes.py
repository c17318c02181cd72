from fastapi import APIRouter, Depends
from supabase import Client
from typing import Dict, List

from workshop_engine.database.supabase_client import get_supabase
from workshop_engine.core.dependencies import get_current_user_id
from workshop_engine.modules.templates.schemas import (
    WorkshopTemplateCreate, WorkshopTemplateUpdate, WorkshopTemplateResponse, ShareLinkResponse
)
from workshop_engine.modules.templates.service import TemplateService

router = APIRouter(prefix="/workshop-templates", tags=["workshop-templates"])


def get_template_service(supabase: Client = Depends(get_supabase)) -> TemplateService:
    return TemplateService(supabase)


@router.post("", response_model=WorkshopTemplateResponse, status_code=201)
def create_template(
    template_data: WorkshopTemplateCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service)
):
    """Create a workshop template (one-time or weekly)"""
    return service.create_template(template_data)


@router.get("", response_model=List[WorkshopTemplateResponse])
def list_templates(
    active_only: bool = False,
    user_data: Dict = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service)
):
    return service.list_templates(active_only=active_only)


@router.get("/{template_id}", response_model=WorkshopTemplateResponse)
def get_template(
    template_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service)
):
    return service.get_template_by_id(template_id)


@router.put("/{template_id}", response_model=WorkshopTemplateResponse)
def update_template(
    template_id: str,
    template_data: WorkshopTemplateUpdate,
    user_data: Dict = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service)
):
    """Edit a template; set is_active=false to stop generating new sessions"""
    return service.update_template(template_id, template_data)


@router.delete("/{template_id}", status_code=204)
def delete_template(
    template_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service)
):
    service.delete_template(template_id)
    return None


@router.get("/{template_id}/share-link", response_model=ShareLinkResponse)
def get_share_link(
    template_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service)
):
    """Public booking URL for this workshop"""
    return service.get_share_link(template_id)
