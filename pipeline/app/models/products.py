"""
Pantry CRM Product Models
"""

from sqlalchemy import Column, String, Numeric, DateTime, Text, Boolean, Uuid
from enum import Enum
import uuid

from ..core.database import Base
from .organizations import utcnow


class ProductCategory(str, Enum):
    """Product catalog categories"""
    PROTEIN = "Protein"
    SAUCE = "Sauce"
    SEASONING = "Seasoning"
    BEVERAGE = "Beverage"
    SNACK = "Snack"
    FROZEN = "Frozen"
    DAIRY = "Dairy"
    BAKERY = "Bakery"
    OTHER = "Other"


class Product(Base):
    """Catalog entry referenced by opportunities"""
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(500), nullable=False)
    category = Column(String(50), default=ProductCategory.OTHER.value)
    description = Column(Text)
    suggested_retail_price = Column(Numeric(10, 2))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Product(name='{self.name}', category='{self.category}')>"
