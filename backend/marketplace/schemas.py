from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from marketplace.utils.geo import Coordinates


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeoPoint(BaseModel):
    lat: Optional[float] = Field(default=None, ge=-90, le=90, allow_inf_nan=False)
    lng: Optional[float] = Field(default=None, ge=-180, le=180, allow_inf_nan=False)

    def to_coordinates(self) -> Optional[Coordinates]:
        if self.lat is None or self.lng is None:
            return None
        return Coordinates(lat=self.lat, lng=self.lng)


class CreateSessionBody(CamelModel):
    device_id: Optional[str] = None
    user_agent: Optional[str] = None


class CreateConversationBody(CamelModel):
    session_id: Optional[str] = None


class PostMessageBody(CamelModel):
    text: Optional[str] = ""
    attachments: List[str] = Field(default_factory=list)
    geo: Optional[GeoPoint] = None
    radius_meters: Optional[int] = Field(default=None, gt=0)


class DirectSearchBody(CamelModel):
    conversation_id: Optional[str] = None
    text: Optional[str] = ""
    geo: Optional[GeoPoint] = None
    radius_meters: Optional[int] = Field(default=None, gt=0)


class ProductSearchBody(CamelModel):
    location: Optional[GeoPoint] = None
    radius_meters: Optional[int] = Field(default=None, gt=0)
    search: Optional[str] = ""
