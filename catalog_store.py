"""
Catalog store over the PocketBase REST API.

Records live in one collection (default "vinyls"). Inside the program the
cost field is always "average_cost"; the persisted column name comes from
PocketBaseSettings.cost_field and is translated here, in both directions.
"""

from typing import Dict, List, Optional

import requests

from config import PocketBaseSettings
from http_client import http_get_with_retry, http_patch_with_retry, http_post_with_retry
from models import COST_FIELD, LEGACY_COST_FIELD, CatalogItem, ItemStatus

AUTH_COLLECTIONS = ("_superusers", "users")
PAGE_SIZE = 200


class PocketBaseStore:
    def __init__(self, settings: PocketBaseSettings = None, session: requests.Session = None):
        self.settings = settings or PocketBaseSettings()
        self.session = session or requests.Session()
        self.token = self.settings.token or ""

    @property
    def base_url(self) -> str:
        return self.settings.url.rstrip("/")

    @property
    def records_url(self) -> str:
        return f"{self.base_url}/api/collections/{self.settings.collection}/records"

    def _headers(self) -> Dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = self.token
        return headers

    def authenticate(self, email: str = None, password: str = None) -> str:
        """
        Password auth, trying the superuser collection first and then regular users.
        Returns the token (also kept for later requests).
        """
        email = email or self.settings.email
        password = password or self.settings.password
        if not email or not password:
            return self.token

        last_error = None
        for coll in AUTH_COLLECTIONS:
            url = f"{self.base_url}/api/collections/{coll}/auth-with-password"
            try:
                r = http_post_with_retry(url, json_data={"identity": email, "password": password},
                                         headers={"Accept": "application/json"}, tries=2,
                                         session=self.session)
            except requests.HTTPError as e:
                last_error = e
                continue
            self.token = r.json().get("token", "")
            print(f"Authenticated with PocketBase as {email} ({coll})")
            return self.token
        raise last_error

    # ---- field translation ----

    def to_stored(self, fields: Dict) -> Dict:
        """Program field names and types to the persisted schema."""
        out = {}
        for key, value in fields.items():
            if key in (COST_FIELD, LEGACY_COST_FIELD):
                key = self.settings.cost_field
            if isinstance(value, ItemStatus):
                value = value.value
            elif isinstance(value, set):
                value = sorted(value)
            out[key] = value
        return out

    def from_stored(self, record: Dict) -> CatalogItem:
        record = dict(record)
        stored_cost = self.settings.cost_field
        if stored_cost not in (COST_FIELD, LEGACY_COST_FIELD) and stored_cost in record:
            record[COST_FIELD] = record.pop(stored_cost)
        return CatalogItem.from_record(record)

    # ---- reads ----

    def records(self, filter_expr: Optional[str] = None) -> List[Dict]:
        """Every raw record of the collection, newest first, following pagination."""
        out = []
        page = 1
        while True:
            params = {"page": page, "perPage": PAGE_SIZE, "sort": "-created"}
            if filter_expr:
                params["filter"] = filter_expr
            r = http_get_with_retry(self.records_url, params=params, headers=self._headers(),
                                    session=self.session, context=f"page {page}")
            js = r.json()
            out.extend(js.get("items", []))
            if page >= (js.get("totalPages") or 1):
                break
            page += 1
        return out

    def list(self, filter_expr: Optional[str] = None) -> List[CatalogItem]:
        return [self.from_stored(r) for r in self.records(filter_expr)]

    def get(self, item_id: str) -> CatalogItem:
        r = http_get_with_retry(f"{self.records_url}/{item_id}", headers=self._headers(), session=self.session)
        return self.from_stored(r.json())

    # ---- writes ----

    def update(self, item_id: str, fields: Dict) -> CatalogItem:
        r = http_patch_with_retry(f"{self.records_url}/{item_id}", json_data=self.to_stored(fields),
                                  headers=self._headers(), session=self.session, tries=2)
        return self.from_stored(r.json())

    def create(self, fields: Dict) -> CatalogItem:
        r = http_post_with_retry(self.records_url, json_data=self.to_stored(fields),
                                 headers=self._headers(), session=self.session, tries=2)
        return self.from_stored(r.json())

    def upload_image(self, item_id: str, data: bytes, filename: str = "cover.jpg",
                     fields: Optional[Dict] = None) -> CatalogItem:
        """Replace the item's image attachment (multipart PATCH), optionally with other fields."""
        form = {k: str(v) for k, v in self.to_stored(fields or {}).items()}
        r = http_patch_with_retry(f"{self.records_url}/{item_id}", data=form,
                                  files={"image": (filename, data, "image/jpeg")},
                                  headers=self._headers(), session=self.session, tries=2, timeout=60)
        return self.from_stored(r.json())

    # ---- files ----

    def file_url(self, item: CatalogItem) -> str:
        collection = item.collection_id or self.settings.collection
        return f"{self.base_url}/api/files/{collection}/{item.id}/{item.image}"

    def download_image(self, item: CatalogItem) -> bytes:
        if not item.image:
            raise ValueError(f"Item {item.id} has no image attached")
        r = http_get_with_retry(self.file_url(item), headers=self._headers(), session=self.session, timeout=60)
        return r.content
