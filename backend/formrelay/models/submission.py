"""
Pydantic models for form submissions and sync results.

Models:
  ContactLocation   - postal location fields sent to Klaviyo
  NormalizedContact - validated view of one opted-in submission
  ProfileOutcome    - result of the profile upsert
  ListOutcome       - result of subscribing to a single list
  SyncOutcome       - profile + per-list results for one request
"""

from typing import Any, Optional

from pydantic import BaseModel


class ContactLocation(BaseModel):
    model_config = {"frozen": True}

    address1: str = ""
    address2: str = ""
    city: str = ""
    region: str = ""
    country: str = ""
    zip: str = ""

    def to_attributes(self) -> dict[str, str]:
        """Location block for the profile payload, empty values dropped."""
        return {k: v for k, v in self.model_dump().items() if v}


class NormalizedContact(BaseModel):
    """
    Derived, validated view of an inbound submission.

    Only built for submissions that opted in. phone_number is either a valid
    E.164 string or empty; it is never the raw submitted value.
    """

    model_config = {"frozen": True}

    email: str
    first_name: str = ""
    last_name: str = ""
    phone_number: str = ""
    location: ContactLocation = ContactLocation()
    properties: dict[str, Any] = {}

    def profile_attributes(self) -> dict[str, Any]:
        attributes: dict[str, Any] = {"email": self.email}
        if self.phone_number:
            attributes["phone_number"] = self.phone_number
        if self.first_name:
            attributes["first_name"] = self.first_name
        if self.last_name:
            attributes["last_name"] = self.last_name
        location = self.location.to_attributes()
        if location:
            attributes["location"] = location
        if self.properties:
            attributes["properties"] = dict(self.properties)
        return attributes


class ProfileOutcome(BaseModel):
    action: str          # "created" | "updated"
    profile_id: str


class ListOutcome(BaseModel):
    list_id: str
    subscribed: bool
    sms_consent: bool = False
    sms_fallback: bool = False
    job_id: Optional[str] = None
    job_status: Optional[str] = None
    error: Optional[dict[str, Any]] = None


class SyncOutcome(BaseModel):
    profile: ProfileOutcome
    lists: list[ListOutcome]

    @property
    def status(self) -> str:
        """Overall status: ok when every list succeeded, partial when some did, else failed."""
        succeeded = sum(1 for outcome in self.lists if outcome.subscribed)
        if self.lists and succeeded == len(self.lists):
            return "ok"
        if succeeded:
            return "partial"
        return "failed"
