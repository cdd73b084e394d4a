from datetime import datetime
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from bairro.config import DEFAULT_SEARCH_RADIUS_KM, DISCOVERY_RESULT_CAP, MAX_SEARCH_RADIUS_KM, MIN_SEARCH_RADIUS_KM


AvailabilityStatus = Literal["available", "busy"]
NotificationKind = Literal["message", "review", "service"]


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ProviderRecord(BaseModel):
    id: str
    role: Literal["provider"] = "provider"
    display_name: str = Field(min_length=1)
    service_type: str = Field(min_length=1)
    neighborhood: str = Field(min_length=1)
    coordinate: Optional[Coordinate] = None
    rating_average: float = 0.0
    review_count: int = 0
    availability_status: AvailabilityStatus = "available"
    photo_url: Optional[str] = None


class ClientProfile(BaseModel):
    id: str
    role: Literal["client"] = "client"
    display_name: str = Field(min_length=1)
    neighborhood: Optional[str] = None
    photo_url: Optional[str] = None


UserProfile = Annotated[Union[ProviderRecord, ClientProfile], Field(discriminator="role")]


class DiscoveryQuery(BaseModel):
    origin: Optional[Coordinate] = None
    radius_km: int = Field(default=DEFAULT_SEARCH_RADIUS_KM, ge=MIN_SEARCH_RADIUS_KM, le=MAX_SEARCH_RADIUS_KM)
    service_filter: Optional[str] = None
    neighborhood_filter: Optional[str] = None
    free_text: Optional[str] = None
    result_cap: int = Field(default=DISCOVERY_RESULT_CAP, ge=1)


class RankedProvider(ProviderRecord):
    distance_km: Optional[float] = None


class DiscoveryResult(BaseModel):
    providers: list[RankedProvider]
    origin: Optional[Coordinate] = None
    origin_is_fallback: bool = False
    radius_km: int
    stale: bool = False
    notice: Optional[str] = None


class Conversation(BaseModel):
    id: str
    participant_ids: list[str]
    participant_names: Dict[str, str] = Field(default_factory=dict)
    last_message_text: str = ""
    last_message_at: Optional[datetime] = None
    last_sender_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def other_participant(self, user_id: str) -> Optional[str]:
        return next((pid for pid in self.participant_ids if pid != user_id), None)


class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    text: str
    sent_at: datetime


class NotificationEvent(BaseModel):
    id: str
    kind: NotificationKind
    source_id: str
    title: str
    body: str
    occurred_at: datetime
    read: bool = False


class NotificationView(NotificationEvent):
    relative_time: str


class NotificationFeed(BaseModel):
    events: list[NotificationView]
    unread_count: int


class Review(BaseModel):
    id: str
    provider_id: str
    client_id: str
    client_name: str
    rating: int = Field(ge=1, le=5)
    comment: str
    created_at: Optional[datetime] = None


class SessionOpenRequest(BaseModel):
    user_id: str


class SessionInfo(BaseModel):
    user_id: str
    role: Literal["provider", "client"]
    display_name: Optional[str] = None
    search_radius_km: int
    unread_count: int = 0


class SearchRadiusUpdateRequest(BaseModel):
    user_id: str
    radius_km: int


class SearchRadiusResponse(BaseModel):
    user_id: str
    radius_km: int


class ConversationCreateRequest(BaseModel):
    user_id: str
    other_user_id: str
    user_name: str
    other_user_name: str


class ConversationCreateResponse(BaseModel):
    conversation_id: str


class MessageSendRequest(BaseModel):
    sender_id: str
    sender_name: str
    text: str


class ReviewCreateRequest(BaseModel):
    provider_id: str
    client_id: str
    client_name: str
    rating: int
    comment: str
