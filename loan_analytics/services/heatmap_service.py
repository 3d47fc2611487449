from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from services.statistics_service import ItemStatistics


NEUTRAL_BACKGROUND = "rgb(249, 250, 251)"
MUTED_TEXT = "rgb(156, 163, 175)"
HIGH_CONTRAST_TEXT = "white"
LOW_CONTRAST_TEXT = "black"
MIN_WEIGHT = 0.1
MAX_WEIGHT = 1.0
HIGH_CONTRAST_THRESHOLD = 0.5

HOUR_LABELS = [f"{hour:02d}:00" for hour in range(24)]


@dataclass(frozen=True)
class HeatmapCell:
    count: int
    weight: float
    is_high_contrast: bool

    @property
    def background_color(self) -> str:
        if self.count == 0:
            return NEUTRAL_BACKGROUND
        return f"rgba(59, 130, 246, {self.weight:g})"

    @property
    def text_color(self) -> str:
        if self.count == 0:
            return MUTED_TEXT
        return HIGH_CONTRAST_TEXT if self.is_high_contrast else LOW_CONTRAST_TEXT


def heatmap_intensity(count: int, row_max: int) -> HeatmapCell:
    if count <= 0:
        return HeatmapCell(count=0, weight=0.0, is_high_contrast=False)
    weight = count / max(row_max, 1)
    weight = max(MIN_WEIGHT, min(MAX_WEIGHT, weight))
    return HeatmapCell(count=count, weight=weight, is_high_contrast=weight > HIGH_CONTRAST_THRESHOLD)


def build_heatmap_rows(
    rows: Iterable[ItemStatistics],
    display_item_id: Callable[[ItemStatistics], str] | None = None,
) -> list[dict]:
    output: list[dict] = []
    for row in rows:
        row_max = max(max(row.hourly_usage, default=0), 1)
        cells = []
        for hour, count in enumerate(row.hourly_usage):
            cell = heatmap_intensity(count, row_max)
            cells.append(
                {
                    "hour": HOUR_LABELS[hour],
                    "count": count,
                    "weight": cell.weight,
                    "backgroundColor": cell.background_color,
                    "color": cell.text_color,
                }
            )
        output.append(
            {
                "itemID": row.item_id,
                "displayItemID": display_item_id(row) if display_item_id else row.item_id,
                "itemName": row.item_name,
                "image": row.image,
                "rowMax": row_max,
                "cells": cells,
            }
        )
    return output
