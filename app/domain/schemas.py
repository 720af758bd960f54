from pydantic import BaseModel
from typing import Optional, List


# ============================================
# Apple Wallet Web Service Schemas
# ============================================

class SerialNumbersResponse(BaseModel):
    lastUpdated: str
    serialNumbers: List[str]


class WalletLogRequest(BaseModel):
    logs: List[str] = []


# ============================================
# Internal Trigger Schemas
# ============================================

class NotifyUpdateRequest(BaseModel):
    serialNumber: Optional[str] = None


class NotifyUpdateResponse(BaseModel):
    message: str
    serialNumber: str
    success: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    status: str
    service: str
    push_enabled: bool


# ============================================
# Pass Issuance Schemas
# ============================================

class GeneratePassRequest(BaseModel):
    cardNumber: Optional[str] = None


class PassInfoResponse(BaseModel):
    serialNumber: str
    passTypeIdentifier: str
    lastUpdated: Optional[str] = None
    devices: int = 0


# ============================================
# Database Webhook Schemas
# ============================================

class DatabaseWebhookEvent(BaseModel):
    type: Optional[str] = None
    table: Optional[str] = None
    record: Optional[dict] = None
    old_record: Optional[dict] = None


class WebhookResponse(BaseModel):
    success: bool
    message: str
    serialNumber: Optional[str] = None
    devices: int = 0
