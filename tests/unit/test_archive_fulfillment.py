import json
from unittest.mock import AsyncMock

import httpx
import pytest

from cartflow.cart.models import Asset, AssetSelection, Rendition
from cartflow.core.errors import AssetDeliveryError
from cartflow.fulfillment.archive import ArchiveFulfillment
from cartflow.fulfillment.client import AssetDeliveryClient
from cartflow.fulfillment.downloads import filename_from_url, rendition_filename


def _status(status, files=()):
  return {"operation": "archive", "status": "ok", "data": {"id": "job-1", "format": "zip", "status": status, "files": list(files)}}


class Recorder:
  def __init__(self, statuses, create_body=None):
    self.statuses = list(statuses)
    self.create_body = {"id": "job-1"} if create_body is None else create_body
    self.status_calls = 0
    self.created = []

  def __call__(self, request: httpx.Request) -> httpx.Response:
    if request.method == "POST" and request.url.path == "/adobe/assets/archives":
      self.created.append(json.loads(request.content))
      return httpx.Response(200, json=self.create_body)
    if request.url.path == "/adobe/assets/archives/job-1/status":
      self.status_calls += 1
      status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
      return httpx.Response(200, json=status)
    return httpx.Response(404)


def _fulfillment(settings, handler, downloader=None, sleep=None):
  client = AssetDeliveryClient(settings, transport=httpx.MockTransport(handler))
  return ArchiveFulfillment(client, downloader or AsyncMock(), poll_interval_seconds=5.0, max_poll_attempts=settings.archive_max_poll_attempts, sleep=sleep or AsyncMock())


def _selections():
  a = Asset(asset_id="urn:aaid:aem:A", name="a.jpg", ready_to_use=True, image_presets=("thumb",))
  b = Asset(asset_id="urn:aaid:aem:B", name="b.mp4")
  return [AssetSelection(a, (Rendition("original"), Rendition("thumb"))), AssetSelection(b, (Rendition("original"),))]


@pytest.mark.anyio
async def test_polling_stops_after_exactly_sixty_attempts(settings):
  recorder = Recorder([_status("PROCESSING")])
  sleep = AsyncMock()
  fulfillment = _fulfillment(settings, recorder, sleep=sleep)

  assert await fulfillment.run(_selections()) is False

  assert recorder.status_calls == 60
  assert sleep.await_count == 59
  sleep.assert_awaited_with(5.0)


@pytest.mark.anyio
async def test_failed_job_reports_failure_without_downloads(settings):
  downloader = AsyncMock()
  recorder = Recorder([_status("PROCESSING"), _status("FAILED")])
  fulfillment = _fulfillment(settings, recorder, downloader=downloader)

  assert await fulfillment.run(_selections()) is False

  assert recorder.status_calls == 2
  downloader.download.assert_not_awaited()


@pytest.mark.anyio
async def test_completed_job_fans_out_every_file(settings):
  downloader = AsyncMock()
  files = ["https://cdn.test/out/part-1.zip?sig=x", "https://cdn.test/out/part-2.zip"]
  recorder = Recorder([_status("PROCESSING"), _status("COMPLETED", files)])
  fulfillment = _fulfillment(settings, recorder, downloader=downloader)

  assert await fulfillment.run(_selections()) is True
  await fulfillment.drain()

  assert sorted(call.args[0] for call in downloader.download.await_args_list) == sorted(files)
  assert recorder.created == [
    {"items": [{"assetId": "urn:aaid:aem:A", "includeRenditions": ["original", "preset_thumb"]}, {"assetId": "urn:aaid:aem:B", "includeRenditions": ["original"]}]}
  ]


@pytest.mark.anyio
async def test_fan_out_failure_does_not_fail_the_batch(settings):
  downloader = AsyncMock()
  downloader.download.side_effect = AssetDeliveryError("gone", status_code=410)
  recorder = Recorder([_status("COMPLETED", ["https://cdn.test/a.zip"])])
  fulfillment = _fulfillment(settings, recorder, downloader=downloader)

  assert await fulfillment.run(_selections()) is True
  await fulfillment.drain()

  downloader.download.assert_awaited_once()


@pytest.mark.anyio
async def test_missing_job_id_fails_immediately(settings):
  recorder = Recorder([_status("COMPLETED")], create_body={})
  fulfillment = _fulfillment(settings, recorder)

  assert await fulfillment.run(_selections()) is False
  assert recorder.status_calls == 0


@pytest.mark.anyio
async def test_create_error_is_reported_as_failure(settings):
  fulfillment = _fulfillment(settings, lambda request: httpx.Response(500))

  assert await fulfillment.run(_selections()) is False


@pytest.mark.anyio
async def test_single_rendition_downloads_directly_with_token(settings):
  downloader = AsyncMock()
  seen = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request.url.path)
    if request.url.path.endswith("/token"):
      return httpx.Response(200, json={"token": "tkn", "expiryTime": 99})
    return httpx.Response(404)

  fulfillment = _fulfillment(settings, handler, downloader=downloader)
  asset = Asset(asset_id="urn:aaid:aem:B", name="clip.mp4")

  assert await fulfillment.download_selections([AssetSelection(asset, (Rendition("low.mp4"),))]) is True

  assert seen == ["/adobe/assets/urn:aaid:aem:B/token"]
  url = downloader.download.await_args.args[0]
  assert url == "https://assets.test/adobe/assets/urn:aaid:aem:B/renditions/low.mp4/as/clip_low.mp4?token=tkn&expiryTime=99"
  assert downloader.download.await_args.kwargs == {"filename": "clip_low.mp4", "authorized": True}


@pytest.mark.anyio
async def test_image_preset_uses_preset_url(settings):
  downloader = AsyncMock()
  fulfillment = _fulfillment(settings, lambda request: httpx.Response(404), downloader=downloader)
  asset = Asset(asset_id="urn:aaid:aem:A", name="photo.png", image_presets=("viewsmall",))

  assert await fulfillment.download_selections([AssetSelection(asset, (Rendition("viewsmall", format="jpeg,rgb"),))]) is True

  url = downloader.download.await_args.args[0]
  assert url == "https://assets.test/adobe/assets/urn:aaid:aem:A/as/photo_viewsmall.jpeg?preset=viewsmall&attachment=true"


@pytest.mark.anyio
async def test_empty_selection_is_a_failure(settings):
  assert await _fulfillment(settings, lambda request: httpx.Response(404)).download_selections([]) is False


def test_filename_from_url_strips_query_and_defaults():
  assert filename_from_url("https://cdn.test/a/b/bundle.zip?x=1") == "bundle.zip"
  assert filename_from_url("https://cdn.test/") == "archive.zip"


def test_rendition_filename_falls_back_to_asset_extension():
  asset = Asset(asset_id="id", name="poster.tif")

  assert rendition_filename(asset, Rendition("web"), is_preset=False) == "poster_web.tif"
  assert rendition_filename(asset, Rendition("web"), is_preset=True) == "poster_web.tif"


@pytest.mark.anyio
@pytest.mark.parametrize("body", [{"operation": "archive", "status": "ok"}, {"data": {"id": "job-1"}}])
async def test_status_without_job_status_ends_polling(settings, body):
  downloader = AsyncMock()
  recorder = Recorder([body])
  fulfillment = _fulfillment(settings, recorder, downloader=downloader)

  assert await fulfillment.run(_selections()) is False

  assert recorder.status_calls == 1
  downloader.download.assert_not_awaited()
