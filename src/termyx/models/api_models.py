from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FraudCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    fingerprint_hash: Optional[str] = Field(default=None, alias="fingerprintHash")


class FraudRecordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    fingerprint_hash: Optional[str] = Field(default=None, alias="fingerprintHash")


class DocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: Optional[str] = Field(default=None, alias="documentId")
