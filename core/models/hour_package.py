# =============================================================================
# core/models/hour_package.py - Hour Package Schemas
# =============================================================================
# Hour packages are prepaid blocks of flight hours sold from templates.
# Ordering a package issues a proforma invoice.
# =============================================================================

from pydantic import BaseModel, Field


class HourPackageTemplateCreate(BaseModel):
    """
    Schema for a sellable package.

    Example:
        {"name": "10h Cessna", "hours": 10, "price_per_hour": 180, "currency": "EUR"}
    """
    name: str = Field(..., min_length=1)
    description: str | None = None
    hours: float = Field(..., gt=0)
    price_per_hour: float = Field(..., gt=0)
    total_price: float | None = Field(
        default=None,
        gt=0,
        description="Package price; defaults to hours * price_per_hour"
    )
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    validity_days: int = Field(default=365, gt=0)
    is_active: bool = True


class HourPackageTemplateUpdate(BaseModel):
    """Partial update; only the fields sent are written."""
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    hours: float | None = Field(default=None, gt=0)
    price_per_hour: float | None = Field(default=None, gt=0)
    total_price: float | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    validity_days: int | None = Field(default=None, gt=0)
    is_active: bool | None = None


class VatBreakdown(BaseModel):
    """Net, VAT and gross amounts, each rounded to 2 decimals."""
    subtotal: float
    vat_amount: float
    total: float
