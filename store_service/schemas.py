"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from store_service.models import MAX_ID


# --- Auth ---

class SignupRequest(BaseModel):
    """Schema for user registration."""
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8)
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    """Schema for login request."""
    email: EmailStr
    password: str = Field(..., min_length=1)


class UpdatePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)
    password_confirm: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=8)
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class UserResponse(BaseModel):
    """Public view of a user; the password hash never leaves the service."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str


# --- Products ---

class ProductCreate(BaseModel):
    """Schema for creating a product."""
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    price: float = Field(..., gt=0)
    quantity: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    image_url: str = Field("", max_length=500)
    featured: bool = False


class ProductUpdate(BaseModel):
    """Schema for a partial product update."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    price: Optional[float] = Field(None, gt=0)
    quantity: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    image_url: Optional[str] = Field(None, max_length=500)
    featured: Optional[bool] = None


class ProductResponse(BaseModel):
    """Schema for product response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    price: float
    quantity: int
    category: str
    image_url: str
    featured: bool
    out_of_stock: bool
    created_by_id: int
    created_at: datetime
    updated_at: datetime


class StockCheckRequest(BaseModel):
    product_id: int = Field(..., ge=1, le=MAX_ID)
    quantity: int = Field(..., ge=1)


# --- Orders ---

class ShippingAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderItemCreate(BaseModel):
    product_id: int = Field(..., ge=1, le=MAX_ID)
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    """Schema for placing an order."""
    products: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: Literal["paystack", "card"] = "paystack"


class OrderStatusUpdate(BaseModel):
    status: str


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    name: str
    price: float
    quantity: int


class PaymentDetails(BaseModel):
    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    authorization_url: Optional[str] = None
    payment_date: Optional[datetime] = None


class OrderResponse(BaseModel):
    """Schema for order response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    items: List[OrderItemResponse]
    total_amount: float
    shipping_address: ShippingAddress
    status: str
    payment_status: str
    payment_method: str
    payment_details: PaymentDetails
    created_at: datetime
    updated_at: datetime
