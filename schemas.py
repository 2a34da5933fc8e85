"""
Database Schemas for the Restaurant Dashboard

Each model maps to a MongoDB collection. Fields are declared in snake_case
and stored under their camelCase alias (owner_id -> ownerId), which is the
shape the dashboard clients read.
- UserProfile -> users (document id is the principal uid)
- Restaurant -> restaurants
- MenuItem -> menuItems
- Feedback -> feedback
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

USERS = "users"
RESTAURANTS = "restaurants"
MENU_ITEMS = "menuItems"
FEEDBACK = "feedback"

COLLECTIONS = [USERS, RESTAURANTS, MENU_ITEMS, FEEDBACK]

RestaurantStatus = Literal['active', 'pending', 'inactive']
MenuItemStatus = Literal['active', 'seasonal', 'inactive']
FeedbackType = Literal['feature', 'bug', 'suggestion', 'general']
FeedbackStatus = Literal['pending', 'reviewed', 'responded']

FEEDBACK_STATUS_ORDER = ['pending', 'reviewed', 'responded']


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserProfile(CamelModel):
    """Per-principal profile document; created lazily on first read."""
    name: str = ''
    status: str = 'active'
    restaurant_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None


class UserProfileUpdate(CamelModel):
    name: Optional[str] = None
    restaurant_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None


class AdminUserUpdate(CamelModel):
    name: Optional[str] = None
    status: Optional[Literal['active', 'inactive', 'suspended']] = None


class Restaurant(CamelModel):
    name: str = Field(..., min_length=1)
    address: Optional[str] = None
    owner_id: Optional[str] = Field(None, description="Principal uid, or owner email for admin-created rows")
    owner_name: Optional[str] = None
    owner_email: Optional[EmailStr] = None
    phone: Optional[str] = None
    status: RestaurantStatus = 'active'
    description: Optional[str] = None


class RestaurantUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = None
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    owner_email: Optional[EmailStr] = None
    phone: Optional[str] = None
    status: Optional[RestaurantStatus] = None
    description: Optional[str] = None


class MenuItem(CamelModel):
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    price: float = Field(0, ge=0)
    cost: float = Field(0, ge=0)
    description: Optional[str] = None
    status: MenuItemStatus = 'active'
    ingredients: Optional[str] = None
    allergens: Optional[str] = None
    prep_time: int = Field(0, ge=0, description="Minutes")
    portion: Optional[str] = None
    restaurant_id: Optional[str] = None


class MenuItemUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    cost: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    status: Optional[MenuItemStatus] = None
    ingredients: Optional[str] = None
    allergens: Optional[str] = None
    prep_time: Optional[int] = Field(None, ge=0)
    portion: Optional[str] = None


class FeedbackSubmission(CamelModel):
    """Body of the feedback form. Blank text never reaches the store."""
    feedback_type: FeedbackType = 'suggestion'
    feedback_text: str
    rating: int = Field(4, ge=1, le=5)

    @field_validator('feedback_text')
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('feedbackText must not be empty')
        return v.strip()


class Feedback(CamelModel):
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[EmailStr] = None
    feedback_type: FeedbackType = 'general'
    feedback_text: str
    rating: int = Field(..., ge=1, le=5)
    status: FeedbackStatus = 'pending'
    response: Optional[str] = None
    responded_at: Optional[datetime] = None


class FeedbackStatusUpdate(CamelModel):
    status: FeedbackStatus
    response: Optional[str] = None


class AdminStatistics(CamelModel):
    total_users: int = 0
    total_restaurants: int = 0
    total_menu_items: int = 0
    total_feedback: int = 0
    error: Optional[str] = None
