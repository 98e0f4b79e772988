from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Literal
from datetime import datetime
from enum import Enum


class FrequencyType(str, Enum):
    realtime = "realtime"
    hourly = "hourly"
    daily = "daily"
    weekly = "weekly"
    custom = "custom"


class ConditionIn(BaseModel):
    # open-ended: unknown types are stored and evaluate to false
    condition_type: str = Field(min_length=1)
    operator: Literal[">", ">=", "<", "<=", "=", "==", "!="]
    threshold_value: float
    threshold_unit: Optional[str] = None
    logical_operator: Literal["AND", "OR"] = "AND"
    order_index: Optional[int] = None


class ConditionOut(BaseModel):
    id: int
    condition_type: str
    operator: str
    threshold_value: float
    threshold_unit: Optional[str] = None
    logical_operator: str
    order_index: int
    model_config = ConfigDict(from_attributes=True)


class TemplateCreate(BaseModel):
    user_id: str
    name: str
    subject: str
    body_html: str
    body_text: Optional[str] = None


class TemplateOut(TemplateCreate):
    id: int
    variables: List[str] = []
    model_config = ConfigDict(from_attributes=True)


class TriggerCreate(BaseModel):
    user_id: str
    name: str
    description: Optional[str] = None
    email_template_id: int
    frequency_type: FrequencyType = FrequencyType.daily
    frequency_value: Optional[str] = None
    is_active: bool = True
    conditions: List[ConditionIn] = []


class TriggerOut(BaseModel):
    id: int
    user_id: str
    name: str
    description: Optional[str] = None
    email_template_id: Optional[int] = None
    frequency_type: str
    frequency_value: Optional[str] = None
    is_active: bool
    conditions: List[ConditionOut] = []
    model_config = ConfigDict(from_attributes=True)


class TriggerActiveUpdate(BaseModel):
    is_active: bool


class ExecutionOut(BaseModel):
    id: int
    trigger_id: int
    customer_email: str
    email_sent: bool
    error_message: Optional[str] = None
    execution_data: Optional[dict] = None
    executed_at: datetime
    model_config = ConfigDict(from_attributes=True)


class SyncRequest(BaseModel):
    user_id: str
    days_back: int = Field(30, ge=1, le=365)


class AnalyzeChurnRequest(BaseModel):
    churnEventId: int
