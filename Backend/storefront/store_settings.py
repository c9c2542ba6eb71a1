"""
Store configuration service.

One store_settings row per owner holds the store's name, slug, banner,
color theme, fonts, contact info and social links. Each field group is
saved on its own as a single-row upsert, so two editors touching different
groups never overwrite each other; within a group the last write wins.

Owner routes (bearer token):
    GET    /store/settings
    PUT    /store/settings/name
    PUT    /store/settings/slug
    PUT    /store/settings/theme
    PUT    /store/settings/fonts
    PUT    /store/settings/contact
    PUT    /store/settings/social
    POST   /store/settings/banner     (multipart, field "file")
    DELETE /store/settings/banner
    GET    /store/slug-check?slug=
"""

import logging
from datetime import datetime, timezone
from typing import Literal, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import (
    AUDIT_BANNER_UPLOADED,
    AUDIT_SETTINGS_UPDATED,
    AUDIT_SLUG_CHANGED,
    get_current_user_id,
    log_audit,
)
from .catalog import with_cache_buster
from .core.config import get_settings as get_app_settings
from .core.db import get_session
from .models import ColorTheme, StoreSettings
from .slugs import SlugError, ensure_slug_available, is_slug_available, normalize_slug, validate_slug
from .storage import STORE_COVERS_FOLDER, ObjectStorage, StorageError, get_storage, store_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/store", tags=["store-settings"])


# ────────────────────────────────────────────────────────────────
# Schemas
# ────────────────────────────────────────────────────────────────

class FontChoice(BaseModel):
    family: str = Field(default="inherit", min_length=1, max_length=100)
    is_custom: bool = False
    custom_font_url: Optional[str] = None

    @model_validator(mode="after")
    def _custom_needs_url(self):
        if self.is_custom and not self.custom_font_url:
            raise ValueError("custom_font_url is required for a custom font")
        if not self.is_custom:
            self.custom_font_url = None
        return self


class FontSettings(BaseModel):
    store_name: FontChoice = Field(default_factory=FontChoice)
    category_text: FontChoice = Field(default_factory=FontChoice)
    general_text: FontChoice = Field(default_factory=FontChoice)


class ContactInfo(BaseModel):
    description: Optional[str] = Field(None, max_length=2000)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=32)
    wifi: Optional[str] = Field(None, max_length=255)
    business_hours: Optional[str] = Field(None, max_length=500)


def _check_link(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Social links must be full http(s) URLs")
    return value


class SocialLinks(BaseModel):
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    telegram: Optional[str] = None

    check_links = field_validator("instagram", "facebook", "telegram")(_check_link)


class StoreNameIn(BaseModel):
    store_name: str = Field(..., max_length=255)

    @field_validator("store_name")
    @classmethod
    def _required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Store name is required")
        return v


class SlugIn(BaseModel):
    slug: str = Field(..., max_length=255)


class ThemeIn(BaseModel):
    color_theme: ColorTheme
    theme_mode: Optional[Literal["light", "dark"]] = None


class StoreSettingsOut(BaseModel):
    user_id: str
    slug: Optional[str] = None
    store_name: Optional[str] = None
    banner_url: Optional[str] = None
    logo_url: Optional[str] = None
    color_theme: str = ColorTheme.DEFAULT.value
    theme_mode: Optional[str] = None
    font_settings: FontSettings = Field(default_factory=FontSettings)
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    public_url: Optional[str] = None
    updated_at: Optional[datetime] = None


class SlugCheckOut(BaseModel):
    slug: str
    available: bool
    error: Optional[str] = None


def public_store_url(slug: Optional[str]) -> Optional[str]:
    if not slug:
        return None
    return f"https://{slug}.{get_app_settings().platform_domain}"


def settings_out(row: Optional[StoreSettings], user_id: str) -> StoreSettingsOut:
    """Serialize a settings row; an owner without a row gets the defaults."""
    if row is None:
        return StoreSettingsOut(user_id=user_id)
    return StoreSettingsOut(
        user_id=row.user_id,
        slug=row.slug,
        store_name=row.store_name,
        banner_url=with_cache_buster(row.banner_url),
        logo_url=with_cache_buster(row.logo_url),
        color_theme=row.color_theme,
        theme_mode=row.theme_mode,
        font_settings=FontSettings.model_validate(row.font_settings or {}),
        contact_info=ContactInfo.model_validate(row.contact_info or {}),
        social_links=SocialLinks.model_validate(row.social_links or {}),
        public_url=public_store_url(row.slug),
        updated_at=row.updated_at,
    )


# ────────────────────────────────────────────────────────────────
# Service functions
# ────────────────────────────────────────────────────────────────

async def get_settings(session: AsyncSession, user_id: str) -> Optional[StoreSettings]:
    return await session.get(StoreSettings, user_id)


async def get_settings_by_slug(session: AsyncSession, slug: str) -> Optional[StoreSettings]:
    result = await session.execute(
        select(StoreSettings).where(StoreSettings.slug == slug.lower())
    )
    return result.scalar_one_or_none()


async def _upsert(
    session: AsyncSession,
    user_id: str,
    values: dict,
    audit_action: str = AUDIT_SETTINGS_UPDATED,
) -> StoreSettings:
    row = await session.get(StoreSettings, user_id)
    if row is None:
        row = StoreSettings(user_id=user_id, **values)
        session.add(row)
    else:
        for field, value in values.items():
            setattr(row, field, value)
    row.updated_at = datetime.now(timezone.utc)

    await log_audit(
        session,
        actor_user_id=user_id,
        action=audit_action,
        target_type="store_settings",
        target_id=user_id,
        metadata={"fields": sorted(values)},
    )
    await session.commit()
    await session.refresh(row)
    return row


async def update_name(session: AsyncSession, user_id: str, store_name: str) -> StoreSettings:
    return await _upsert(session, user_id, {"store_name": store_name})


async def update_slug(session: AsyncSession, user_id: str, raw_slug: str) -> StoreSettings:
    """
    Normalize, validate and claim a slug.

    Raises:
        HTTPException 422: If the normalized slug is empty or malformed
        HTTPException 409: If another store already holds it
    """
    slug = normalize_slug(raw_slug)
    try:
        validate_slug(slug)
    except SlugError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    await ensure_slug_available(session, slug, user_id)
    try:
        row = await _upsert(session, user_id, {"slug": slug}, audit_action=AUDIT_SLUG_CHANGED)
    except IntegrityError:
        # Claimed by someone else between the check and the write
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"The slug '{slug}' is already in use by another store",
        )
    logger.info(f"🔗 Store {user_id} now at slug '{slug}'")
    return row


async def update_theme(session: AsyncSession, user_id: str, theme: ThemeIn) -> StoreSettings:
    values = {"color_theme": theme.color_theme.value}
    if theme.theme_mode is not None:
        values["theme_mode"] = theme.theme_mode
    return await _upsert(session, user_id, values)


async def update_fonts(session: AsyncSession, user_id: str, fonts: FontSettings) -> StoreSettings:
    return await _upsert(session, user_id, {"font_settings": fonts.model_dump()})


async def update_contact_info(session: AsyncSession, user_id: str, contact: ContactInfo) -> StoreSettings:
    return await _upsert(session, user_id, {"contact_info": contact.model_dump()})


async def update_social_links(session: AsyncSession, user_id: str, links: SocialLinks) -> StoreSettings:
    return await _upsert(session, user_id, {"social_links": links.model_dump()})


async def upload_banner(
    session: AsyncSession,
    storage: ObjectStorage,
    user_id: str,
    data: bytes,
) -> StoreSettings:
    """
    Compress and upload a cover image, then save its public URL.

    An upload that succeeds followed by a failed save leaves the object in
    the bucket.
    """
    url = await store_image(storage, user_id, STORE_COVERS_FOLDER, "cover-image", data)
    return await _upsert(session, user_id, {"banner_url": url}, audit_action=AUDIT_BANNER_UPLOADED)


async def remove_banner(
    session: AsyncSession,
    storage: ObjectStorage,
    user_id: str,
) -> StoreSettings:
    row = await get_settings(session, user_id)
    if row is None or not row.banner_url:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No banner to remove")

    key = storage.key_from_url(row.banner_url)
    if key:
        try:
            await storage.remove([key])
        except StorageError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Delete failed: {e}")
    else:
        logger.warning(f"Banner URL for {user_id} is not in our bucket, clearing reference only")

    return await _upsert(session, user_id, {"banner_url": None})


async def check_slug(session: AsyncSession, user_id: str, raw_slug: str) -> SlugCheckOut:
    """Availability check; never writes."""
    slug = normalize_slug(raw_slug)
    try:
        validate_slug(slug)
    except SlugError as e:
        return SlugCheckOut(slug=slug, available=False, error=str(e))
    return SlugCheckOut(slug=slug, available=await is_slug_available(session, slug, user_id))


# ────────────────────────────────────────────────────────────────
# Owner routes
# ────────────────────────────────────────────────────────────────

@router.get("/settings", response_model=StoreSettingsOut)
async def read_settings(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return settings_out(await get_settings(session, user_id), user_id)


@router.put("/settings/name", response_model=StoreSettingsOut)
async def put_name(
    payload: StoreNameIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return settings_out(await update_name(session, user_id, payload.store_name), user_id)


@router.put("/settings/slug", response_model=StoreSettingsOut)
async def put_slug(
    payload: SlugIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return settings_out(await update_slug(session, user_id, payload.slug), user_id)


@router.put("/settings/theme", response_model=StoreSettingsOut)
async def put_theme(
    payload: ThemeIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return settings_out(await update_theme(session, user_id, payload), user_id)


@router.put("/settings/fonts", response_model=StoreSettingsOut)
async def put_fonts(
    payload: FontSettings,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return settings_out(await update_fonts(session, user_id, payload), user_id)


@router.put("/settings/contact", response_model=StoreSettingsOut)
async def put_contact(
    payload: ContactInfo,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return settings_out(await update_contact_info(session, user_id, payload), user_id)


@router.put("/settings/social", response_model=StoreSettingsOut)
async def put_social(
    payload: SocialLinks,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return settings_out(await update_social_links(session, user_id, payload), user_id)


@router.post("/settings/banner", response_model=StoreSettingsOut)
async def post_banner(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
):
    data = await file.read()
    logger.info(f"Banner upload from {user_id}: {file.filename} ({len(data)} bytes)")
    return settings_out(await upload_banner(session, storage, user_id, data), user_id)


@router.delete("/settings/banner", response_model=StoreSettingsOut)
async def delete_banner(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
):
    return settings_out(await remove_banner(session, storage, user_id), user_id)


@router.get("/slug-check", response_model=SlugCheckOut)
async def slug_check(
    slug: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await check_slug(session, user_id, slug)
