import re
import random
import string
from datetime import datetime
from supabase import Client
from pydantic import ValidationError as PydanticValidationError
from typing import List, Optional
from fastapi import HTTPException
import logging

from workshop_engine.config.settings import settings
from workshop_engine.core.errors import NotFound, ValidationError
from workshop_engine.modules.templates.schemas import (
    RecurrencePattern, RecurrenceRule, RecurrenceType,
    WorkshopTemplateCreate, WorkshopTemplateUpdate, WorkshopTemplateResponse, ShareLinkResponse
)

logger = logging.getLogger(__name__)


def make_slug(title: str) -> str:
    """Slugified title plus a short random suffix, e.g. intro-to-robotics-k3f9a"""
    base = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "workshop"
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"{base}-{suffix}"


def validate_rule(
    recurrence_type: RecurrenceType,
    recurrence_pattern: RecurrencePattern,
    duration: int,
    capacity_per_slot: int
) -> RecurrenceRule:
    """Validate the scheduling fields together. Raises ValidationError naming the offending field."""
    try:
        return RecurrenceRule(
            recurrence_type=recurrence_type,
            recurrence_pattern=recurrence_pattern,
            duration=duration,
            capacity_per_slot=capacity_per_slot,
        )
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(p) for p in error.get("loc", ())) or "recurrence_pattern"
        message = error.get("msg", "Invalid recurrence").removeprefix("Value error, ")
        raise ValidationError(message, field=field)


class TemplateService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def create_template(self, template_data: WorkshopTemplateCreate) -> WorkshopTemplateResponse:
        """Validate and store a new workshop template with a fresh shareable slug"""
        rule = validate_rule(
            template_data.recurrence_type,
            template_data.recurrence_pattern,
            template_data.duration,
            template_data.capacity_per_slot,
        )
        try:
            result = self.supabase.table("workshop_templates").insert({
                "title": template_data.title,
                "description": template_data.description,
                "duration": rule.duration,
                "recurrence_type": rule.recurrence_type.value,
                "recurrence_pattern": rule.recurrence_pattern.model_dump(mode="json", exclude_none=True),
                "capacity_per_slot": rule.capacity_per_slot,
                "is_active": template_data.is_active,
                "target_audience": template_data.target_audience,
                "shareable_slug": make_slug(template_data.title),
            }).execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create workshop template")

            logger.info(f"Created workshop template {result.data[0]['id']} ({template_data.title})")
            return WorkshopTemplateResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating workshop template: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_template_by_id(self, template_id: str) -> WorkshopTemplateResponse:
        try:
            result = self.supabase.table("workshop_templates")\
                .select("*")\
                .eq("id", template_id)\
                .maybe_single()\
                .execute()

            if not result or not result.data:
                raise NotFound("Workshop template", template_id)

            return WorkshopTemplateResponse(**result.data)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_template_by_slug(self, slug: str) -> WorkshopTemplateResponse:
        """Public lookup used by booking links. Inactive templates are not exposed."""
        try:
            result = self.supabase.table("workshop_templates")\
                .select("*")\
                .eq("shareable_slug", slug)\
                .maybe_single()\
                .execute()

            if not result or not result.data or not result.data.get("is_active", True):
                raise NotFound("Workshop", slug)

            return WorkshopTemplateResponse(**result.data)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_templates(
        self,
        active_only: bool = False,
        template_ids: Optional[List[str]] = None
    ) -> List[WorkshopTemplateResponse]:
        try:
            query = self.supabase.table("workshop_templates").select("*")
            if active_only:
                query = query.eq("is_active", True)
            if template_ids is not None:
                if not template_ids:
                    return []
                query = query.in_("id", template_ids)
            result = query.order("created_at", desc=True).execute()
            return [WorkshopTemplateResponse(**t) for t in (result.data or [])]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def update_template(self, template_id: str, template_data: WorkshopTemplateUpdate) -> WorkshopTemplateResponse:
        """
        Update a template. Scheduling fields are re-validated against the merged rule.
        Already persisted slots keep their own capacity and end time.
        """
        current = self.get_template_by_id(template_id)
        update_data = {}
        if template_data.title:
            update_data["title"] = template_data.title.strip()
        if template_data.description is not None:
            update_data["description"] = template_data.description
        if template_data.is_active is not None:
            update_data["is_active"] = template_data.is_active
        if template_data.target_audience is not None:
            update_data["target_audience"] = template_data.target_audience

        scheduling_changed = any(
            v is not None for v in (
                template_data.recurrence_type,
                template_data.recurrence_pattern,
                template_data.duration,
                template_data.capacity_per_slot,
            )
        )
        if scheduling_changed:
            rule = validate_rule(
                template_data.recurrence_type or current.recurrence_type,
                template_data.recurrence_pattern or current.recurrence_pattern,
                template_data.duration if template_data.duration is not None else current.duration,
                template_data.capacity_per_slot if template_data.capacity_per_slot is not None else current.capacity_per_slot,
            )
            update_data.update({
                "recurrence_type": rule.recurrence_type.value,
                "recurrence_pattern": rule.recurrence_pattern.model_dump(mode="json", exclude_none=True),
                "duration": rule.duration,
                "capacity_per_slot": rule.capacity_per_slot,
            })

        if not update_data:
            return current
        update_data["updated_at"] = datetime.utcnow().isoformat()

        try:
            result = self.supabase.table("workshop_templates")\
                .update(update_data)\
                .eq("id", template_id)\
                .execute()

            if not result.data:
                raise NotFound("Workshop template", template_id)

            return WorkshopTemplateResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def delete_template(self, template_id: str) -> bool:
        """Delete a template and its empty slots. Rejected while any of its slots has bookings."""
        self.get_template_by_id(template_id)
        try:
            slots_result = self.supabase.table("workshop_slots")\
                .select("id")\
                .eq("workshop_template_id", template_id)\
                .execute()
            slot_ids = [s["id"] for s in (slots_result.data or [])]

            if slot_ids:
                bookings_result = self.supabase.table("bookings")\
                    .select("id")\
                    .in_("workshop_slot_id", slot_ids)\
                    .limit(1)\
                    .execute()
                if bookings_result.data:
                    raise ValidationError(
                        "Workshop has sessions with bookings; deactivate it instead of deleting",
                        field="id",
                    )
                self.supabase.table("workshop_slots")\
                    .delete()\
                    .eq("workshop_template_id", template_id)\
                    .execute()

            result = self.supabase.table("workshop_templates")\
                .delete()\
                .eq("id", template_id)\
                .execute()

            logger.info(f"Deleted workshop template {template_id} ({len(slot_ids)} empty slot(s))")
            return len(result.data or []) > 0
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_share_link(self, template_id: str) -> ShareLinkResponse:
        template = self.get_template_by_id(template_id)
        base = settings.public_booking_base_url.rstrip("/")
        return ShareLinkResponse(
            template_id=template.id,
            slug=template.shareable_slug,
            url=f"{base}/?mode=booking&slug={template.shareable_slug}",
        )
