"""
Materials Management (MM) payloads
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Material(BaseModel):
    """Material master record (MARA/MAKT subset)"""
    material_number: str
    description: str
    material_type: str
    material_group: str = ""
    base_unit_of_measure: str
    net_weight: float = 0.0
    gross_weight: float = 0.0
    weight_unit: str = ""
    plant: str = ""
    storage_location: str = ""
    standard_price: float = 0.0
    currency: str = "EUR"
    deletion_flag: bool = False
    created_at: Optional[datetime] = None
    changed_at: Optional[datetime] = None


class CreateMaterialRequest(BaseModel):
    material_number: Optional[str] = Field(None, max_length=40)
    description: str = Field(..., min_length=1, max_length=100)
    material_type: str = Field(..., min_length=1, max_length=4)
    material_group: str = Field("", max_length=9)
    base_unit_of_measure: str = Field(..., min_length=1, max_length=3)
    net_weight: float = Field(0.0, ge=0)
    gross_weight: float = Field(0.0, ge=0)
    weight_unit: str = Field("", max_length=3)
    plant: str = Field("", max_length=4)
    storage_location: str = Field("", max_length=4)
    standard_price: float = Field(0.0, ge=0)
    currency: str = Field("EUR", max_length=5)


class UpdateMaterialRequest(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=100)
    material_group: Optional[str] = Field(None, max_length=9)
    net_weight: Optional[float] = Field(None, ge=0)
    gross_weight: Optional[float] = Field(None, ge=0)
    weight_unit: Optional[str] = Field(None, max_length=3)
    plant: Optional[str] = Field(None, max_length=4)
    storage_location: Optional[str] = Field(None, max_length=4)
    standard_price: Optional[float] = Field(None, ge=0)


class MaterialListResponse(BaseModel):
    materials: List[Material]
    total_count: int
    page: int
    page_size: int
