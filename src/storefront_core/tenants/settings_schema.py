"""
Versioned tenant settings.

Stored as JSONB on the tenant row. Unknown keys are ignored on load so newer
writers do not break older readers; missing sections take their defaults so
older rows load under newer code. Bump ``CURRENT_SCHEMA_VERSION`` and add a
step to ``_MIGRATIONS`` when a field changes meaning.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from storefront_core.exceptions import ValidationError

CURRENT_SCHEMA_VERSION = 1

SUPPORTED_LOCALES = ("fr-CH", "de-CH", "it-CH", "rm-CH", "en")


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore", validate_assignment=True)


class GeneralSettings(_Section):
    shop_name: str = ""
    contact_email: Optional[str] = None
    timezone: str = "Europe/Zurich"
    weight_unit: str = "kg"
    currency: str = "CHF"
    locale: str = "fr-CH"

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, v: str) -> str:
        v = v.upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be an ISO-4217 code")
        return v

    @field_validator("locale")
    @classmethod
    def _known_locale(cls, v: str) -> str:
        if v not in SUPPORTED_LOCALES:
            raise ValueError(f"locale must be one of {SUPPORTED_LOCALES}")
        return v


class LegalSettings(_Section):
    business_name: str = ""
    business_address: str = ""


class ShippingSettings(_Section):
    enable_local_pickup: bool = False


class TaxSettings(_Section):
    taxes_included: bool = True
    tax_shipping: bool = True
    automatic_tax_calculation: bool = True


class FeatureFlags(_Section):
    multi_language: bool = True
    customer_accounts: bool = True
    guest_checkout: bool = True
    product_reviews: bool = False
    wishlist: bool = False
    compare_products: bool = False


class TenantSettings(_Section):
    schema_version: int = CURRENT_SCHEMA_VERSION
    general: GeneralSettings = Field(default_factory=GeneralSettings)
    legal: LegalSettings = Field(default_factory=LegalSettings)
    shipping: ShippingSettings = Field(default_factory=ShippingSettings)
    taxes: TaxSettings = Field(default_factory=TaxSettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    @classmethod
    def defaults_for(cls, shop_name: str, contact_email: Optional[str]) -> "TenantSettings":
        return cls(
            general=GeneralSettings(shop_name=shop_name, contact_email=contact_email),
            legal=LegalSettings(business_name=shop_name),
        )

    @classmethod
    def load(cls, raw: Optional[Mapping[str, Any]]) -> "TenantSettings":
        """Parse a stored blob, upgrading older schema versions."""
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise ValidationError(
                "Tenant settings must be an object",
                code="invalid_settings",
                details={"type": type(raw).__name__},
            )
        data = dict(raw)
        version = data.get("schema_version", 1)
        # bool is an int subclass
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise ValidationError(
                "Unsupported settings schema version",
                code="invalid_settings",
                details={"schema_version": repr(version)},
            )
        if version > CURRENT_SCHEMA_VERSION:
            # written by newer code; unknown fields are dropped by extra="ignore"
            data["schema_version"] = CURRENT_SCHEMA_VERSION
        while version < CURRENT_SCHEMA_VERSION:
            data = _MIGRATIONS[version](data)
            version += 1
            data["schema_version"] = version
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError("Invalid tenant settings", code="invalid_settings", details={"errors": e.errors(include_url=False, include_context=False)}) from e

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# version N -> N + 1
_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {}
