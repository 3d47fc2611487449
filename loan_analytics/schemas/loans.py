from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SelectEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    eventID: Optional[str] = None


class DisplayModeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    wide: Optional[bool] = None
    mergeByName: Optional[bool] = None


class SortRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    view: Literal["history", "statistics"]
    column: Literal[
        "item_info",
        "item_id",
        "item_name",
        "loan_count",
        "total_duration",
        "average_duration",
        "loan_period",
        "start_datetime",
        "end_datetime",
        "duration",
    ]


class ShortLoanDeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    thresholdSeconds: Optional[float] = Field(default=None, gt=0)
