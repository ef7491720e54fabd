"""
Pydantic schemas for request/response validation in the Storefront service.

These schemas define the structure of data for API requests and responses.
Request bodies accept both camelCase (as sent by the web client) and
snake_case field names.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    """Administrative lifecycle status of an order."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ON_HOLD = "on-hold"
    CANCELLED = "cancelled"


class PaymentState(str, Enum):
    """Payment outcome of an order, tracked separately from its status."""
    UNVERIFIED = "unverified"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    """Status of a single payment record."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentOutcome(str, Enum):
    """Outcome reported by a payment provider."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RequestModel(BaseModel):
    """Base for request bodies: camelCase aliases, snake_case also accepted."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


# --- Users ---

class UserRegister(BaseModel):
    """Schema for user registration with password."""
    email: EmailStr
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class Token(BaseModel):
    """Schema for JWT token response."""
    access_token: str
    token_type: str = "bearer"


class User(BaseModel):
    """Schema for user responses, excludes the password hash."""
    id: int
    email: str
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class AdminUserCreate(RequestModel):
    """Schema for staff creating an account on someone's behalf."""
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: UserRole = UserRole.USER


class AdminUserUpdate(RequestModel):
    """Schema for PATCH /admin/users/{id}. Only role and activation can change."""
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


# --- Service catalog ---

class ServiceCreate(RequestModel):
    """Schema for adding a service to the catalog."""
    name: str = Field(..., min_length=1)
    description: str
    base_price: int = Field(..., ge=0, description="Price in cents")
    type: str
    features: Optional[str] = None


class Service(BaseModel):
    id: int
    name: str
    description: str
    base_price: int
    type: str
    features: Optional[str] = None

    class Config:
        from_attributes = True


# --- Orders ---

class OrderRequirements(RequestModel):
    """
    Project requirements submitted by the customer.

    Only the project name is required; everything else is filled in as the
    project takes shape.
    """
    project_name: str = Field(..., min_length=1)
    brand_colors: Optional[str] = None
    logo_requirements: Optional[str] = None
    target_audience: Optional[str] = None
    additional_notes: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    company_name: Optional[str] = None
    hosting_preference: Optional[str] = None
    domain_name: Optional[str] = None
    technical_contact: Optional[str] = None
    deployment_notes: Optional[str] = None
    technologies: Optional[List[str]] = None
    database_type: Optional[str] = None
    scalability_requirements: Optional[str] = None
    security_requirements: Optional[str] = None
    ai_features: Optional[str] = None
    model_requirements: Optional[str] = None
    version_control: Optional[str] = None
    containerization: Optional[str] = None
    project_timeline: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Serialize for storage, keeping the client's camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


class OrderCreate(RequestModel):
    """Schema for creating a new order."""
    service_id: int
    total_price: int = Field(..., gt=0, description="Total in cents")
    requirements: Optional[OrderRequirements] = None


class OrderUpdate(RequestModel):
    """Schema for PATCH /orders/{id}. All fields are optional."""
    status: Optional[OrderStatus] = None
    requirements: Optional[OrderRequirements] = None


class Order(BaseModel):
    """
    Schema for order responses.

    Attributes:
        id (int): Order's unique identifier
        user_id (int): Owning user
        service_id (int): Purchased service
        status (str): Administrative status
        payment_state (str): Payment outcome
        total_price (int): Total in cents
        requirements (dict): Project requirements, if submitted
        created_at (datetime): When the order was created
    """
    id: int
    user_id: int
    service_id: int
    status: str
    payment_state: str
    total_price: int
    requirements: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderEvent(BaseModel):
    """
    Schema for order timeline events.

    Attributes:
        id (int): Event ID
        order_id (int): Order identifier
        event_type (str): Type of event
        description (str): Human-readable event description
        old_value (str): Previous value (optional)
        new_value (str): New value (optional)
        user_id (int): User who triggered the event (optional)
        created_at (datetime): When the event occurred
    """
    id: int
    order_id: int
    event_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


# --- Payments ---

class CartItem(RequestModel):
    """A cart line as sent by the checkout page."""
    id: int
    name: Optional[str] = None


class PaymentIntentCreate(RequestModel):
    """Schema for starting a card payment."""
    amount: int = Field(..., gt=0, description="Amount in cents")
    items: List[CartItem] = Field(..., min_length=1)


class CryptoClaimCreate(RequestModel):
    """Schema for a self-reported crypto transfer."""
    transaction_hash: str = Field(..., min_length=1)
    method: str
    amount: Decimal = Field(..., gt=0, description="Amount in major currency units")


class CryptoMethod(BaseModel):
    symbol: str
    name: str
    address: str
    network: Optional[str] = None
    min_confirmations: int
    payment_link: str


# --- Notifications ---

class Notification(BaseModel):
    id: int
    user_id: int
    title: str
    message: str
    type: Optional[str] = None
    related_id: Optional[int] = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True
