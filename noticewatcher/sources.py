"""API-backed source adapters for transit operator notices."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Sequence
from urllib.parse import urljoin

import requests

from .errors import SourceUnavailable
from .models import NormalizedNotice, Operator, OperatorCode, RouteRef

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20
USER_AGENT = "NoticeWatcher/1.0"

KMB_ROUTE_API = "https://data.etabus.gov.hk/v1/transport/kmb/route/"
KMB_NOTICE_API = "https://search.kmb.hk/KMBWebSite/Function/FunctionRequest.ashx"
KMB_DOCUMENT_API = "https://search.kmb.hk/KMBWebSite/AnnouncementPicture.ashx"
KMB_BOUND_CODES = {"O": 1, "I": 2}

CTB_ROUTE_API = "https://rt.data.gov.hk/v2/transport/citybus/route/ctb"
CTB_NOTICE_API = "https://mobile.citybus.com.hk/nwp3/getnotice.php"
CTB_NOTICE_BASE = "https://mobile.citybus.com.hk/nwp3/notice/"


class JsonClient:
    """Lightweight wrapper around a requests session for JSON endpoints."""

    def __init__(self,
                 timeout: float = DEFAULT_TIMEOUT,
                 session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        })

    def get(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise SourceUnavailable(f"GET {url} failed: {exc}") from exc
        except ValueError as exc:
            raise SourceUnavailable(f"GET {url} returned invalid JSON: {exc}") from exc


def data_rows(payload: Any, *, context: str, allow_missing: bool = False) -> List[dict]:
    """Extract the ``data`` list from an operator payload.

    Anything other than an object whose ``data`` is a list of objects is
    rejected. With ``allow_missing`` a missing or null ``data`` reads as empty.
    """
    if not isinstance(payload, dict):
        raise SourceUnavailable(
            f"{context}: expected a JSON object, got {type(payload).__name__}"
        )
    rows = payload.get("data")
    if rows is None and allow_missing:
        return []
    if not isinstance(rows, list):
        raise SourceUnavailable(f"{context}: 'data' is not a list")
    for row in rows:
        if not isinstance(row, dict):
            raise SourceUnavailable(f"{context}: unexpected row {row!r}")
    return rows


def dedupe_routes(routes: Iterable[RouteRef]) -> List[RouteRef]:
    """Collapse routes sharing a key; later entries replace earlier ones."""
    unique: Dict[str, RouteRef] = {}
    for route in routes:
        unique[route.key] = route
    return list(unique.values())


class SourceAdapter(ABC):
    """Fetches an operator's routes and the notices advertised on each."""

    operator: Operator

    def __init__(self, client: JsonClient | None = None):
        self.client = client or JsonClient()

    @abstractmethod
    def list_routes(self) -> List[RouteRef]:
        """Return the deduplicated route catalog; raise SourceUnavailable on failure."""

    @abstractmethod
    def list_notices(self, route: RouteRef) -> List[NormalizedNotice]:
        """Return notices currently advertised for ``route``."""


class KMBAdapter(SourceAdapter):
    operator = Operator(name="KMB", code=OperatorCode.KMB)

    def list_routes(self) -> List[RouteRef]:
        payload = self.client.get(KMB_ROUTE_API)
        rows = data_rows(payload, context="KMB route catalog")
        routes = []
        for row in rows:
            route = str(row.get("route") or "").strip()
            if not route:
                logger.debug("Skipping KMB catalog row without route: %r", row)
                continue
            routes.append(RouteRef(route=route, bound=_kmb_bound(row.get("bound"))))
        unique = dedupe_routes(routes)
        logger.info("KMB catalog lists %d routes (%d rows)", len(unique), len(rows))
        return unique

    def list_notices(self, route: RouteRef) -> List[NormalizedNotice]:
        payload = self.client.get(
            KMB_NOTICE_API,
            params={
                "action": "getAnnounce",
                "route": route.route,
                "bound": route.bound if route.bound is not None else 1,
            },
        )
        notices = []
        for row in data_rows(payload, context=f"KMB notices for {route.key}", allow_missing=True):
            notice_id = str(row.get("kpi_referenceno") or "").strip()
            image_url = str(row.get("kpi_noticeimageurl") or "").strip()
            if not notice_id or not image_url:
                raise SourceUnavailable(
                    f"KMB notice for {route.key} lacks reference or image url: {row!r}"
                )
            notices.append(
                NormalizedNotice(
                    notice_id=notice_id,
                    document_url=f"{KMB_DOCUMENT_API}?url={image_url}",
                ))
        return notices


class CTBAdapter(SourceAdapter):
    operator = Operator(name="Citybus", code=OperatorCode.CTB)

    def list_routes(self) -> List[RouteRef]:
        payload = self.client.get(CTB_ROUTE_API)
        rows = data_rows(payload, context="CTB route catalog")
        routes = []
        for row in rows:
            route = str(row.get("route") or "").strip()
            if route:
                routes.append(RouteRef(route=route))
        unique = dedupe_routes(routes)
        logger.info("CTB catalog lists %d routes (%d rows)", len(unique), len(rows))
        return unique

    def list_notices(self, route: RouteRef) -> List[NormalizedNotice]:
        payload = self.client.get(CTB_NOTICE_API, params={"id": route.route})
        notices = []
        for row in data_rows(payload, context=f"CTB notices for {route.key}", allow_missing=True):
            filename = str(row.get("filename") or "").strip()
            if not filename:
                raise SourceUnavailable(f"CTB notice for {route.key} lacks filename: {row!r}")
            notices.append(
                NormalizedNotice(
                    notice_id=filename,
                    document_url=urljoin(CTB_NOTICE_BASE, filename),
                ))
        return notices


ADAPTERS = {
    OperatorCode.KMB: KMBAdapter,
    OperatorCode.CTB: CTBAdapter,
}


def build_adapters(codes: Sequence[str],
                   timeout: float = DEFAULT_TIMEOUT) -> List[SourceAdapter]:
    """Instantiate adapters for the configured operator codes."""
    adapters: List[SourceAdapter] = []
    for code in codes:
        try:
            adapter_cls = ADAPTERS[OperatorCode(code)]
        except (KeyError, ValueError) as exc:
            raise ValueError(f"No source adapter for operator {code!r}") from exc
        adapters.append(adapter_cls(client=JsonClient(timeout=timeout)))
    return adapters


def _kmb_bound(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, str) and value.upper() in KMB_BOUND_CODES:
        return KMB_BOUND_CODES[value.upper()]
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise SourceUnavailable(f"KMB route catalog has unknown bound {value!r}") from exc
