"""
Database Schemas for the Auto Pro shop

Each Pydantic model corresponds to a collection (lowercased class name):
- Vehicle -> "vehicle"
- Appointment -> "appointment"
- ContactMessage -> "contactmessage"

Models validate records before they are written through the DocumentStore.
Stored documents use snake_case field names; vehicle images keep the
``{url, alt, isPrimary}`` shape the storefront reads.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

CURRENT_YEAR = datetime.now().year

BodyType = Literal[
    "Sedan", "SUV", "Truck", "Coupe", "Convertible", "Wagon", "Hatchback", "Van", "Crossover"
]
FuelType = Literal["Gasoline", "Diesel", "Hybrid", "Electric", "Plug-in Hybrid"]
Transmission = Literal["Manual", "Automatic", "CVT"]
Drivetrain = Literal["FWD", "RWD", "AWD", "4WD"]
VehicleStatus = Literal["available", "pending", "sold", "hold"]
Condition = Literal["Excellent", "Good", "Fair", "Poor"]

AppointmentStatus = Literal[
    "pending", "confirmed", "in-progress", "completed", "cancelled", "no-show"
]
ServiceType = Literal["repair", "maintenance", "inspection", "consultation", "estimate"]
Urgency = Literal["low", "medium", "high", "emergency"]
PaymentStatus = Literal["pending", "partial", "paid", "refunded"]
PaymentMethod = Literal["cash", "card", "check", "financing"]

ServiceCategory = Literal["Repair", "Maintenance", "Diagnostic", "Emergency", "Sales", "Towing"]
Role = Literal["customer", "admin"]

VEHICLE_STATUSES = ("available", "pending", "sold", "hold")
APPOINTMENT_STATUSES = ("pending", "confirmed", "in-progress", "completed", "cancelled", "no-show")


class VehicleImage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(..., min_length=1)
    alt: str = ""
    is_primary: bool = Field(False, alias="isPrimary")

    def to_doc(self) -> dict:
        return self.model_dump(by_alias=True)


class Vehicle(BaseModel):
    year: int = Field(..., ge=1900, le=CURRENT_YEAR + 1)
    make: str = Field(..., min_length=1, description="Manufacturer, e.g. Toyota")
    model: str = Field(..., min_length=1, description="Model name, e.g. Camry")
    trim: Optional[str] = None
    vin: Optional[str] = Field(None, max_length=17)
    price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    mileage: int = Field(0, ge=0)
    body_type: Optional[BodyType] = None
    exterior_color: Optional[str] = None
    interior_color: Optional[str] = None
    fuel_type: Optional[FuelType] = None
    transmission: Optional[Transmission] = None
    drivetrain: Optional[Drivetrain] = None
    engine: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    images: List[VehicleImage] = Field(default_factory=list)
    financing_available: bool = False
    monthly_payment: Optional[float] = Field(None, ge=0)
    stock_number: str = Field(..., min_length=1)
    status: VehicleStatus = "available"
    condition: Condition = "Good"
    description: Optional[str] = Field(None, max_length=2000)
    carfax_available: bool = False
    carfax_url: Optional[str] = None
    accident_history: bool = False
    number_of_owners: int = Field(1, ge=1)
    views: int = Field(0, ge=0)
    inquiries: int = Field(0, ge=0)
    featured: bool = False
    slug: Optional[str] = None

    def to_doc(self) -> dict:
        doc = self.model_dump()
        doc["images"] = [image.to_doc() for image in self.images]
        return doc


class VehicleInfo(BaseModel):
    year: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    vin: Optional[str] = None
    mileage: Optional[int] = None
    color: Optional[str] = None
    license_plate: Optional[str] = None


class CostBreakdown(BaseModel):
    labor: float = 0
    parts: float = 0
    total: float = 0


class WorkItem(BaseModel):
    service: str
    description: Optional[str] = None
    cost: float = 0
    technician: Optional[str] = None
    duration: Optional[int] = Field(None, description="Minutes")
    completed_at: Optional[datetime] = None


class PartUsed(BaseModel):
    part_number: Optional[str] = None
    description: str
    quantity: int = Field(1, ge=1)
    unit_cost: float = 0
    total_cost: float = 0


class AppointmentNote(BaseModel):
    author: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=1000)
    is_customer_visible: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CustomerSatisfaction(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    feedback: Optional[str] = None
    would_recommend: Optional[bool] = None


class WarrantyInfo(BaseModel):
    has_warranty: bool = False
    warranty_period: Optional[int] = Field(None, description="Days")
    warranty_expires: Optional[datetime] = None
    warranty_terms: Optional[str] = None


class Appointment(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: str = Field(..., min_length=1)
    date: str = Field(..., description="ISO date string YYYY-MM-DD")
    time: str = Field(..., description="Requested slot, e.g. 10:00 AM")
    service: str = Field(..., min_length=1)
    service_type: ServiceType = "repair"
    vehicle_info: VehicleInfo = Field(default_factory=VehicleInfo)
    message: str = Field("", max_length=1000)
    urgency: Urgency = "medium"
    status: AppointmentStatus = "pending"
    assigned_technician: Optional[str] = None
    estimated_duration: int = Field(60, description="Minutes")
    estimated_cost: CostBreakdown = Field(default_factory=CostBreakdown)
    actual_cost: CostBreakdown = Field(default_factory=CostBreakdown)
    work_performed: List[WorkItem] = Field(default_factory=list)
    parts_used: List[PartUsed] = Field(default_factory=list)
    notes: List[AppointmentNote] = Field(default_factory=list)
    follow_up_date: Optional[str] = None
    follow_up_required: bool = False
    customer_satisfaction: Optional[CustomerSatisfaction] = None
    reminder_sent: bool = False
    confirmation_sent: bool = False
    payment_status: PaymentStatus = "pending"
    payment_method: Optional[PaymentMethod] = None
    warranty_info: WarrantyInfo = Field(default_factory=WarrantyInfo)


class AppointmentUpdate(BaseModel):
    """Fields an admin may change on an existing appointment."""

    status: Optional[AppointmentStatus] = None
    service_type: Optional[ServiceType] = None
    urgency: Optional[Urgency] = None
    assigned_technician: Optional[str] = None
    estimated_duration: Optional[int] = None
    estimated_cost: Optional[CostBreakdown] = None
    actual_cost: Optional[CostBreakdown] = None
    work_performed: Optional[List[WorkItem]] = None
    parts_used: Optional[List[PartUsed]] = None
    follow_up_date: Optional[str] = None
    follow_up_required: Optional[bool] = None
    customer_satisfaction: Optional[CustomerSatisfaction] = None
    reminder_sent: Optional[bool] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    warranty_info: Optional[WarrantyInfo] = None
    date: Optional[str] = None
    time: Optional[str] = None


class Location(BaseModel):
    city: Optional[str] = None
    state: Optional[str] = None


class TestimonialVehicle(BaseModel):
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None


class Testimonial(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    message: str = Field(..., min_length=1, max_length=1000)
    service_received: Optional[str] = None
    vehicle_info: Optional[TestimonialVehicle] = None
    approved: bool = False
    featured: bool = False
    avatar: Optional[str] = None
    location: Optional[Location] = None


class EstimatedTime(BaseModel):
    min: Optional[int] = None
    max: Optional[int] = None


class PriceRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class Pricing(BaseModel):
    base_price: Optional[float] = Field(None, ge=0)
    price_range: Optional[PriceRange] = None
    pricing_note: Optional[str] = None


class ServiceWarranty(BaseModel):
    has_warranty: bool = False
    period: Optional[int] = Field(None, description="Days")
    terms: Optional[str] = None


class Service(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    category: ServiceCategory
    description: str = Field(..., min_length=1, max_length=500)
    detailed_description: Optional[str] = Field(None, max_length=2000)
    features: List[str] = Field(default_factory=list)
    estimated_time: Optional[EstimatedTime] = None
    pricing: Optional[Pricing] = None
    icon: str = "wrench"
    image: Optional[str] = None
    active: bool = True
    featured: bool = False
    order: int = 0
    tags: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    warranty: Optional[ServiceWarranty] = None


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class NotificationPreferences(BaseModel):
    email: bool = True
    sms: bool = False
    newsletter: bool = True


class User(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str
    salt: str
    phone: Optional[str] = None
    role: Role = "customer"
    address: Optional[Address] = None
    preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    is_active: bool = True
    last_login: Optional[datetime] = None


class ContactMessage(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    subject: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=5000)
    vehicle_id: Optional[str] = None
    read: bool = False
    responded: bool = False


class Session(BaseModel):
    token: str
    user_id: str
    email: str
    role: Role
    expires_at: datetime
