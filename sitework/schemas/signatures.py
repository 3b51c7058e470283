import uuid
from typing import Literal, Optional

from pydantic import BaseModel, model_validator

SignatureType = Literal["RAMS", "Induction", "Site Notice", "Toolbox Talk", "Onboarding"]
SignatureMethod = Literal["Digital Pad", "Checkbox Confirm"]


class SignatureCreate(BaseModel):
    signature_type: SignatureType
    method: SignatureMethod
    signature_data: Optional[str] = None
    document_id: Optional[uuid.UUID] = None
    document_title: Optional[str] = None
    document_version: Optional[str] = None
    project_id: Optional[uuid.UUID] = None
    plot_id: Optional[uuid.UUID] = None
    device_info: Optional[dict] = None

    @model_validator(mode="after")
    def check_source(self):
        if self.document_id is None and not (self.document_title or "").strip():
            raise ValueError("document_id or document_title is required")
        if self.method == "Digital Pad" and not self.signature_data:
            raise ValueError("A drawn signature is required for Digital Pad signing")
        return self
