"""Deserialization boundary for Amber response bodies.

Amber (and proxies in front of it) return either a bare JSON array or an
object wrapping the array under ``result``, ``data`` or, for the sites list,
``sites``. The accepted shapes form one tagged union; extract_records() is the
single place that decides which array a payload carries.
"""
import logging
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, RootModel, ValidationError

logger = logging.getLogger(__name__)


class BareList(RootModel[list[dict[str, Any]]]):
    """Response body is the array itself."""


class ResultEnvelope(BaseModel):
    """Response wrapped as ``{"result": [...]}``."""

    model_config = ConfigDict(extra="allow")

    result: list[dict[str, Any]]


class DataEnvelope(BaseModel):
    """Response wrapped as ``{"data": [...]}``."""

    model_config = ConfigDict(extra="allow")

    data: list[dict[str, Any]]


class SitesEnvelope(BaseModel):
    """Sites list wrapped as ``{"sites": [...]}``."""

    model_config = ConfigDict(extra="allow")

    sites: list[dict[str, Any]]


UpstreamPayload = Union[BareList, ResultEnvelope, DataEnvelope, SitesEnvelope]

# Tried in order: when several wrappers are present, result beats data beats sites
_SHAPES: tuple[type[BaseModel], ...] = (BareList, ResultEnvelope, DataEnvelope, SitesEnvelope)


def parse_payload(payload: Any) -> UpstreamPayload | None:
    """Classify a decoded JSON body into one of the accepted shapes.

    Returns:
        The matching shape, or None if the body matches none of them
    """
    for shape in _SHAPES:
        try:
            return shape.model_validate(payload)
        except ValidationError:
            continue
    return None


def extract_records(payload: Any) -> list[dict[str, Any]]:
    """Return the record array carried by an upstream payload.

    Unrecognised shapes yield an empty list (logged), never an exception.
    """
    parsed = parse_payload(payload)
    if parsed is None:
        logger.warning(f"Unrecognised Amber payload shape: {type(payload).__name__}")
        return []

    if isinstance(parsed, BareList):
        return parsed.root
    if isinstance(parsed, ResultEnvelope):
        return parsed.result
    if isinstance(parsed, DataEnvelope):
        return parsed.data
    return parsed.sites
