"""
Coupon metadata pinning via Pinata.
Without PINATA_JWT the metadata is embedded in a ``mock://ipfs/<base64>`` URI.
"""
from __future__ import annotations
import base64
import json

import httpx

from giggle.core.config import get_settings
from giggle.core.errors import CollaboratorError
from giggle.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

PINATA_PIN_URL = "https://api.pinata.cloud/pinning/pinJSONToIPFS"
MOCK_PREFIX = "mock://ipfs/"


class PinataIPFS:
    def __init__(self, jwt: str = None, gateway: str = None, timeout: float = 15.0):
        self.jwt = jwt if jwt is not None else settings.PINATA_JWT
        self.gateway = gateway if gateway is not None else settings.PINATA_GATEWAY
        self.timeout = timeout

    async def pin_metadata(self, metadata: dict) -> str:
        if not self.jwt:
            encoded = base64.b64encode(json.dumps(metadata).encode()).decode()
            return f"{MOCK_PREFIX}{encoded}"
        payload = {
            "pinataContent": metadata,
            "pinataMetadata": {
                "name": f"Giggle Gift Coupon - ${metadata.get('amount')} {metadata.get('token')}",
                "keyvalues": {"type": "gift-coupon", "token": metadata.get("token"),
                              "amount": metadata.get("amount")},
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(PINATA_PIN_URL, json=payload,
                                         headers={"Authorization": f"Bearer {self.jwt}"})
                resp.raise_for_status()
                cid = resp.json()["IpfsHash"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.error("Pinata upload failed: %s", exc)
            raise CollaboratorError(f"IPFS upload failed: {exc}") from exc
        logger.info("Pinned coupon metadata %s", cid)
        return f"ipfs://{cid}"

    async def fetch_metadata(self, uri: str) -> dict:
        if not uri:
            return {}
        if uri.startswith(MOCK_PREFIX):
            try:
                return json.loads(base64.b64decode(uri[len(MOCK_PREFIX):]))
            except ValueError as exc:
                raise CollaboratorError(f"Malformed mock IPFS URI: {exc}") from exc
        if not self.gateway:
            raise CollaboratorError("PINATA_GATEWAY not configured")
        url = f"https://{self.gateway}/ipfs/{uri.removeprefix('ipfs://')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CollaboratorError(f"IPFS fetch failed: {exc}") from exc
