"""
vCenter tagging client.

Tags are not exposed by the SOAP API used for inventory and performance data.
They come from the vCenter REST endpoints under /rest/com/vmware/cis.

Design
The tag service only needs two json calls, so it depends on a narrow
RestClient interface. RequestsRestClient is the live implementation,
tests pass a dict backed fake.

Tag ids are useless to operators, so every tag id is resolved to its name
and category name before it reaches the TagIndex.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Set

import requests

from vsphere_telemetry.core.errors import TagServiceError
from vsphere_telemetry.core.types import ObjectRef, Tag

logger = logging.getLogger(__name__)

SESSION_PATH = "/rest/com/vmware/cis/session"
TAG_PATH = "/rest/com/vmware/cis/tagging/tag"
CATEGORY_PATH = "/rest/com/vmware/cis/tagging/category"
ATTACHED_OBJECTS_PATH = "/rest/com/vmware/cis/tagging/tag-association?~action=list-attached-objects-on-tags"

SESSION_HEADER = "vmware-api-session-id"


class RestClient(Protocol):
    """Simple json client interface for testability."""

    def get_json(self, path: str) -> Dict[str, Any]:
        """Return parsed json for the given path."""

    def post_json(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Post a json body and return the parsed json response."""


def rest_base_url(sdk_url: str) -> str:
    """
    Derive the REST base url from the SOAP SDK url.

    https://vcenter.local/sdk becomes https://vcenter.local
    """
    base = sdk_url.rstrip("/")
    if base.endswith("/sdk"):
        base = base[: -len("/sdk")]
    return base


@dataclass
class RequestsRestClient(RestClient):
    """
    REST client backed by a requests session.

    The session is created on first use by posting basic auth credentials
    to the session endpoint. The returned token is sent on every call.
    """

    base_url: str
    user: str
    password: str
    verify: bool = False
    timeout_seconds: int = 30
    _session: Optional[requests.Session] = field(default=None, init=False, repr=False)

    def _login(self) -> requests.Session:
        if self._session is not None:
            return self._session

        session = requests.Session()
        session.verify = self.verify
        resp = session.post(
            self.base_url + SESSION_PATH,
            auth=(self.user, self.password),
            timeout=self.timeout_seconds,
        )
        resp.raise_for_status()
        session.headers[SESSION_HEADER] = resp.json()["value"]
        self._session = session
        return session

    def get_json(self, path: str) -> Dict[str, Any]:
        session = self._login()
        resp = session.get(self.base_url + path, timeout=self.timeout_seconds)
        resp.raise_for_status()
        return resp.json()

    def post_json(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        session = self._login()
        resp = session.post(self.base_url + path, json=body, timeout=self.timeout_seconds)
        resp.raise_for_status()
        return resp.json()

    def close(self) -> None:
        if self._session is None:
            return
        try:
            self._session.delete(self.base_url + SESSION_PATH, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            logger.debug("failed to close tagging session: %s", exc)
        finally:
            self._session.close()
            self._session = None


@dataclass
class VCenterTagService:
    """
    Tag service reading every tag association from vCenter.

    snapshot returns a mapping of object reference to the tags attached to it.
    Any transport or payload error is raised as TagServiceError.
    """

    client: RestClient
    log: logging.Logger = logger

    def snapshot(self) -> Dict[ObjectRef, Set[Tag]]:
        try:
            return self._snapshot()
        except requests.RequestException as exc:
            raise TagServiceError(f"tagging api unreachable: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise TagServiceError(f"unexpected tagging api payload: {exc}") from exc

    def _snapshot(self) -> Dict[ObjectRef, Set[Tag]]:
        categories = self._category_names()
        tags = self._tags(categories)
        if not tags:
            return {}

        attached = self.client.post_json(ATTACHED_OBJECTS_PATH, {"tag_ids": sorted(tags)})

        result: Dict[ObjectRef, Set[Tag]] = {}
        for association in attached.get("value", []):
            tag = tags.get(association.get("tag_id"))
            if tag is None:
                continue
            for obj in association.get("object_ids", []):
                ref = ObjectRef(kind=str(obj["type"]), moid=str(obj["id"]))
                result.setdefault(ref, set()).add(tag)

        self.log.debug("tag snapshot covers %d objects", len(result))
        return result

    def _category_names(self) -> Dict[str, str]:
        names: Dict[str, str] = {}
        for category_id in self.client.get_json(CATEGORY_PATH).get("value", []):
            obj = self.client.get_json(f"{CATEGORY_PATH}/id:{category_id}").get("value", {})
            if obj:
                names[str(obj["id"])] = str(obj["name"])
        return names

    def _tags(self, categories: Dict[str, str]) -> Dict[str, Tag]:
        tags: Dict[str, Tag] = {}
        for tag_id in self.client.get_json(TAG_PATH).get("value", []):
            obj = self.client.get_json(f"{TAG_PATH}/id:{tag_id}").get("value", {})
            if not obj:
                continue
            category = categories.get(str(obj.get("category_id")))
            if category is None:
                self.log.warning("tag %s references unknown category %s", tag_id, obj.get("category_id"))
                continue
            tags[str(obj["id"])] = Tag(category=category, value=str(obj["name"]))
        return tags
