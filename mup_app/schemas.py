from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from mup_app.services.unit_pricing import to_decimal


class InstallationResponse(BaseModel):
    shopDomain: str
    active: bool
    installedAt: datetime
    updatedAt: datetime
    uninstalledAt: datetime | None = None


class UpsertInstallationRequest(BaseModel):
    adminAccessToken: str = Field(min_length=1)
    registerWebhooks: bool = True

    @field_validator("adminAccessToken")
    @classmethod
    def strip_token(cls, value: str) -> str:
        token = value.strip()
        if not token:
            raise ValueError("adminAccessToken cannot be blank")
        return token


class MupSettingsRequest(BaseModel):
    shopDomain: str = Field(min_length=1)
    levyVariantId: str = Field(min_length=1)
    minimumUnitPrice: str = "0.65"
    enforcementEnabled: bool = True
    geoipEnabled: bool = False
    debug: bool = False
    maxmindAccountId: str = ""
    maxmindLicenseKey: str = ""
    overrideCodes: str = ""

    @field_validator("minimumUnitPrice")
    @classmethod
    def validate_minimum_unit_price(cls, value: str) -> str:
        parsed = to_decimal(value)
        if parsed is None or parsed <= 0:
            raise ValueError("minimumUnitPrice must be a positive decimal")
        return value.strip()


class MupSettingsResponse(BaseModel):
    shopDomain: str
    levyVariantId: str | None = None
    minimumUnitPrice: str
    enforcementEnabled: bool
    active: bool
    geoipEnabled: bool
    hasGeoipCredentials: bool
    debug: bool
    overrideCodes: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class LevyProductRequest(BaseModel):
    shopDomain: str = Field(min_length=1)


class LevyProductResponse(BaseModel):
    shopDomain: str
    productGid: str
    variantGid: str
    title: str
    handle: str


class HealthCheckRequest(BaseModel):
    shopDomain: str = Field(min_length=1)
    limit: int = Field(default=50, ge=1, le=250)
    cursor: str | None = None


class VariantHealthResponse(BaseModel):
    id: str
    title: str | None = None
    sku: str | None = None
    status: Literal["complete", "partial", "missing"]
    units: str | None = None
    issues: list[str] = Field(default_factory=list)


class ProductHealthResponse(BaseModel):
    id: str
    title: str | None = None
    handle: str | None = None
    status: Literal["complete", "partial", "missing"]
    issues: list[str] = Field(default_factory=list)
    variants: list[VariantHealthResponse] = Field(default_factory=list)


class HealthCheckResponse(BaseModel):
    shopDomain: str
    totalProducts: int
    complete: int
    partial: int
    missing: int
    productsNeedingAttention: list[ProductHealthResponse] = Field(default_factory=list)
    hasNextPage: bool = False
    endCursor: str | None = None


class OverrideCodesResponse(BaseModel):
    success: bool
    codes: list[str] = Field(default_factory=list)


class VariantDataItem(BaseModel):
    id: str
    price: str | None = None
    units: str


class VariantDataResponse(BaseModel):
    success: bool
    variant: VariantDataItem | None = None
