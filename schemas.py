"""
Request bodies for the Pinboard API

Stored documents live in MongoDB collections named after the resource:
- user, pin, comment, vote (plus pin_lock, used only for write serialization)

Field aliases keep the camelCase names the clients send.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(ApiModel):
    username: Optional[str] = Field(None, description="Public handle, 3-30 chars of letters, digits, underscore")


class NewPinIn(ApiModel):
    name: Optional[str] = Field(None, description="Display name of the place")
    lat: Optional[float] = None
    lng: Optional[float] = None
    google_place_id: Optional[str] = Field(None, alias="googlePlaceId")


class PinCreate(NewPinIn):
    pass


class CommentCreate(ApiModel):
    content: Optional[str] = Field(None, description="Comment text, 1-1000 chars after trimming")
    country: Optional[str] = None
    city: Optional[str] = None
    pin_id: Optional[str] = Field(None, alias="pinId")
    new_pin: Optional[NewPinIn] = Field(None, alias="newPin")


class VoteCast(ApiModel):
    comment_id: Optional[str] = Field(None, alias="commentId")
    vote_type: Any = Field(None, alias="voteType", description="1 (like) or -1 (dislike)")
