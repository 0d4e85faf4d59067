from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class VersionedEndpoint(BaseModel):
    path: str
    version: str
    deprecated: bool = False
    deprecation_date: Optional[datetime] = None
    sunset_date: Optional[datetime] = None
