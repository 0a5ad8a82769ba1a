"""Wire models and protocols for asset delivery and archive jobs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from cartflow.cart.models import AssetSelection


class ArchiveStatus(str, Enum):
  PROCESSING = "PROCESSING"
  COMPLETED = "COMPLETED"
  FAILED = "FAILED"


class ArchiveItem(BaseModel):
  asset_id: str = Field(alias="assetId")
  include_renditions: list[str] = Field(default_factory=list, alias="includeRenditions")
  model_config = ConfigDict(populate_by_name=True)


class CreateArchiveRequest(BaseModel):
  """Archive creation payload: one item per asset with the rendition names to bundle."""

  items: list[ArchiveItem]

  @classmethod
  def from_selections(cls, selections: Sequence[AssetSelection]) -> CreateArchiveRequest:
    return cls(items=[ArchiveItem(asset_id=selection.asset.asset_id, include_renditions=selection.rendition_names()) for selection in selections])

  def to_payload(self) -> dict:
    return self.model_dump(by_alias=True)


class ArchiveData(BaseModel):
  id: str | None = None
  format: str | None = None
  # A missing status or one outside ArchiveStatus ends polling as a failure.
  status: str | None = None
  files: list[str] = Field(default_factory=list)
  model_config = ConfigDict(extra="ignore")


class ArchiveStatusResponse(BaseModel):
  operation: str | None = None
  status: str | None = None
  description: str | None = None
  data: ArchiveData | None = None
  model_config = ConfigDict(extra="ignore")


class DownloadToken(BaseModel):
  token: str
  expiry_time: int | None = Field(default=None, alias="expiryTime")
  model_config = ConfigDict(populate_by_name=True, extra="ignore")


@dataclass(frozen=True)
class ArchiveJob:
  """Server-side archive job; files are populated once it completes."""

  id: str
  status: ArchiveStatus = ArchiveStatus.PROCESSING
  files: tuple[str, ...] = field(default_factory=tuple)

  @property
  def is_terminal(self) -> bool:
    return self.status is not ArchiveStatus.PROCESSING


class FileDownloader(Protocol):
  """Fetches one file URL to local storage."""

  async def download(self, url: str, *, filename: str | None = None, authorized: bool = False) -> Path:
    """Download url and return where it was written."""


class SelectionDownloader(Protocol):
  """What the workflow needs from fulfillment: download selections, report success."""

  async def download_selections(self, selections: Sequence[AssetSelection]) -> bool:
    """Return True when the download was triggered successfully."""
