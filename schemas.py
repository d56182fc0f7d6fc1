import base64
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class PlantImage(BaseModel):
    """Photo uploaded by the farmer at step 1."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "image/jpeg"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class UserData(BaseModel):
    model_config = ConfigDict(frozen=True)

    crop: str = Field(min_length=1)
    days_planted: int = Field(gt=0)
    plant_image: Optional[PlantImage] = None


class DiseaseInfo(BaseModel):
    """A disease candidate. `image_url` is filled in once its visualization arrives."""

    name: str = Field(min_length=1)
    description: str
    image_url: Optional[str] = None

    @property
    def is_selectable(self) -> bool:
        return bool(self.image_url)


class PredictionResponse(BaseModel):
    diseases: List[DiseaseInfo]


class SolutionInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    immediate_actions: List[str] = Field(alias="immediateActions", min_length=1)
    recommended_treatments: List[str] = Field(alias="recommendedTreatments", min_length=1)
    long_term_prevention: List[str] = Field(alias="longTermPrevention", min_length=1)


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(uri: str) -> Tuple[bytes, str]:
    """Split a `data:<mime>;base64,<payload>` URI back into (bytes, mime type)."""
    if not uri or not uri.startswith("data:") or ";base64," not in uri:
        raise ValueError("Not a base64 data URI")
    header, payload = uri.split(",", 1)
    mime_type = header[len("data:"):].split(";", 1)[0]
    return base64.b64decode(payload), mime_type
