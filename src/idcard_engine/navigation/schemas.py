"""Pydantic schemas for navigation guard responses."""

from typing import Optional

from pydantic import BaseModel


class NavigationResponse(BaseModel):
    outcome: str
    route: Optional[str] = None
    replace: bool = False
    blocks_rendering: bool = True
