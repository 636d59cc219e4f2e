# module storefront.payments.schemas
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from storefront.cart.validation import SKU_PATTERN, MAX_QUANTITY, SKU_MAX_LENGTH

Quantity = Annotated[int, Field(strict=True, ge=1, le=MAX_QUANTITY)]

class CheckoutItem(BaseModel):
    """Ligne envoyée par le client: seuls sku et quantity comptent (tout prix client est ignoré)."""
    model_config = ConfigDict(extra="ignore")

    sku: str = Field(min_length=1, max_length=SKU_MAX_LENGTH, pattern=SKU_PATTERN)
    quantity: Quantity

class CheckoutRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    items: List[CheckoutItem] = Field(min_length=1)
    customer_email: Optional[EmailStr] = Field(default=None, alias="customerEmail")
    user_id: Optional[str] = Field(default=None, alias="userId", min_length=1, max_length=128)
    metadata: Dict[str, str] = Field(default_factory=dict)
    success_url: Optional[str] = Field(default=None, alias="successUrl", max_length=2048)
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl", max_length=2048)

class CaptureRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    processor_reference: str = Field(alias="processorReference", min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_\-]+$")
