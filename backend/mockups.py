import logging
import time
from typing import Dict, Optional

import requests

logger = logging.getLogger(__name__)

# Product document field that carries each vendor's identifier.
PROVIDER_FIELDS = {
    "printful": "printfulId",
    "placeit": "placeItTemplateId",
    "teespace": "teeSpaceId",
}


class MockupError(Exception):
    """Raised when a mockup vendor rejects a request or returns no image."""


class MockupProvider:
    name = ""

    def __init__(self, api_key: str, timeout: float = 30):
        self.api_key = api_key
        self.timeout = timeout

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def generate(self, design: str, vendor_id) -> str:
        raise NotImplementedError

    def _request(self, method: str, url: str, **kwargs) -> Dict:
        try:
            response = requests.request(
                method, url, headers=self.headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            logger.error("%s request failed: %s", self.name, exc)
            raise MockupError(f"Could not reach {self.name}.") from exc

        if not response.ok:
            logger.error(
                "%s returned %s: %s", self.name, response.status_code, response.text
            )
            raise MockupError(
                f"{self.name} rejected the mockup request ({response.status_code})."
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise MockupError(f"{self.name} returned an unreadable response.") from exc
        if not isinstance(data, dict):
            raise MockupError(f"{self.name} returned an unexpected response.")
        return data


class PrintfulProvider(MockupProvider):
    name = "printful"
    base_url = "https://api.printful.com"
    print_area = 1800

    def __init__(
        self,
        api_key: str,
        timeout: float = 30,
        poll_interval: float = 1.0,
        max_polls: int = 60,
    ):
        super().__init__(api_key, timeout)
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    def create_task(self, design: str, variant_id) -> str:
        payload = {
            "variant_ids": [variant_id],
            "format": "jpg",
            "files": [
                {
                    "placement": "front",
                    "image_url": design,
                    "position": {
                        "area_width": self.print_area,
                        "area_height": self.print_area,
                        "width": self.print_area,
                        "height": self.print_area,
                        "top": 0,
                        "left": 0,
                    },
                }
            ],
        }
        data = self._request(
            "POST", f"{self.base_url}/mockup-generator/create-task", json=payload
        )
        task_key = (data.get("result") or {}).get("task_key")
        if not task_key:
            raise MockupError("printful did not return a task key.")
        return task_key

    def poll_task(self, task_key: str) -> str:
        for _ in range(self.max_polls):
            data = self._request(
                "GET",
                f"{self.base_url}/mockup-generator/task",
                params={"task_key": task_key},
            )
            result = data.get("result") or {}
            status = result.get("status")
            if status == "completed":
                mockups = result.get("mockups") or []
                first = mockups[0] if mockups else {}
                url = first.get("mockup_url") or first.get("url")
                if not url:
                    raise MockupError("printful completed without a mockup image.")
                return url
            if status == "failed":
                raise MockupError(
                    f"printful mockup task failed: {result.get('error') or 'unknown error'}"
                )
            time.sleep(self.poll_interval)

        raise MockupError(
            f"printful mockup task {task_key} did not complete after {self.max_polls} checks."
        )

    def generate(self, design: str, vendor_id) -> str:
        task_key = self.create_task(design, vendor_id)
        logger.info("Created printful mockup task %s", task_key)
        return self.poll_task(task_key)


class PlaceitProvider(MockupProvider):
    name = "placeit"
    endpoint = "https://api.placeit.net/api/v1/mockups"

    def generate(self, design: str, vendor_id) -> str:
        data = self._request(
            "POST",
            self.endpoint,
            json={
                "template_id": vendor_id,
                "modification_type": "smart",
                "modifications": {"design": {"image": design}},
            },
        )
        url = data.get("url")
        if not url:
            raise MockupError("placeit did not return a mockup url.")
        return url


class TeeSpaceProvider(MockupProvider):
    name = "teespace"
    endpoint = "https://api.teespace.com/v1/mockup"

    def headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key}

    def generate(self, design: str, vendor_id) -> str:
        data = self._request(
            "POST",
            self.endpoint,
            json={
                "product_id": vendor_id,
                "design": design,
                "view": "front",
                "background": "white",
            },
        )
        url = data.get("mockup_url")
        if not url:
            raise MockupError("teespace did not return a mockup url.")
        return url


PROVIDER_CLASSES = {
    "printful": (PrintfulProvider, "PRINTFUL_API_KEY"),
    "placeit": (PlaceitProvider, "PLACEIT_API_KEY"),
    "teespace": (TeeSpaceProvider, "TEESPACE_API_KEY"),
}


def build_providers(config) -> Dict[str, MockupProvider]:
    timeout = float(config.get("MOCKUP_REQUEST_TIMEOUT") or 30)
    providers: Dict[str, MockupProvider] = {}
    for name, (provider_class, key_name) in PROVIDER_CLASSES.items():
        api_key = (config.get(key_name) or "").strip()
        if api_key:
            providers[name] = provider_class(api_key, timeout=timeout)
    return providers


def resolve_vendor_id(provider_name: str, payload: Dict, product: Optional[Dict]):
    explicit = (
        payload.get("variantId")
        or payload.get("templateId")
        or payload.get("vendorId")
    )
    if explicit:
        return explicit
    if product:
        return product.get(PROVIDER_FIELDS.get(provider_name, ""))
    return None
