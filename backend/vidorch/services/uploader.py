"""Delivery of compiled music videos.

HttpVideoUploader posts the file to a configured upload endpoint (IPFS
pinning service, S3 presign proxy, ...). LocalVideoStore keeps the file
in the scratch directory and returns the URL the API serves it from.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


class VideoUploader(ABC):
    @abstractmethod
    async def upload(self, task_id: str, path: Path) -> str:
        """Upload `path` and return its public URL."""
        ...


class HttpVideoUploader(VideoUploader):
    """Multipart upload to an HTTP endpoint answering with {"url": ...}.

    Endpoints answering with an IPFS hash ({"IpfsHash": ...} or {"cid": ...})
    are mapped to a gateway URL.
    """

    def __init__(
        self,
        upload_url: str,
        api_key: Optional[str] = None,
        gateway_url: str = "https://gateway.pinata.cloud/ipfs",
        timeout: float = 300.0,
    ):
        self.upload_url = upload_url
        self.api_key = api_key
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(httpx.TransportError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def upload(self, task_id: str, path: Path) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        filename = f"music_video_{task_id}.mp4"
        logger.info(f"Uploading {path} to {self.upload_url} as {filename}")

        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=30.0)) as client:
            with open(path, "rb") as f:
                response = await client.post(
                    self.upload_url,
                    headers=headers,
                    files={"file": (filename, f, "video/mp4")},
                )
        response.raise_for_status()
        data = response.json()

        url = data.get("url")
        if not url:
            cid = data.get("IpfsHash") or data.get("cid")
            if not cid:
                raise ValueError(f"Upload response has no url or IPFS hash: {data}")
            url = f"{self.gateway_url}/{cid}"
        logger.info(f"Video for task {task_id} available at {url}")
        return url


class LocalVideoStore(VideoUploader):
    """Keeps compiled videos on disk, served by GET /videos/{task_id}."""

    def __init__(self, public_url: str):
        self.public_url = public_url.rstrip("/")

    async def upload(self, task_id: str, path: Path) -> str:
        if not path.is_file():
            raise FileNotFoundError(f"Compiled video not found: {path}")
        url = f"{self.public_url}/videos/{task_id}"
        logger.info(f"Video for task {task_id} kept locally at {path}, served at {url}")
        return url
