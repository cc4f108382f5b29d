#!/usr/bin/env python3
"""Typed discovery listing (``GET /apis``) and the synthetic group augmentation."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_serializer

from ..core.errors import DiscoveryError

SYNTHETIC_GROUP_VERSION = 'v1'


class _DiscoveryModel(BaseModel):
    model_config = ConfigDict(extra='allow', populate_by_name=True)

    @model_serializer(mode='wrap')
    def _omit_unset_optionals(self, handler):
        # Only declared fields are omitted when None; unknown upstream fields keep their nulls
        data = handler(self)
        for name, field in type(self).model_fields.items():
            for key in (field.alias, name):
                if key and key in data and data[key] is None:
                    del data[key]
        return data


class GroupVersionForDiscovery(_DiscoveryModel):
    """One ``{"groupVersion": ..., "version": ...}`` pair of a discovery group."""

    group_version: str = Field(default='', alias='groupVersion')
    version: str = ''


class APIGroup(_DiscoveryModel):
    name: str = ''
    versions: List[GroupVersionForDiscovery] = Field(default_factory=list)
    preferred_version: Optional[GroupVersionForDiscovery] = Field(default=None, alias='preferredVersion')


class APIGroupList(_DiscoveryModel):
    """The upstream's list of served API groups.

    Fields this model does not know about are kept and written back out, so
    augmenting the listing never drops upstream data.
    """

    kind: Optional[str] = None
    api_version: Optional[str] = Field(default=None, alias='apiVersion')
    groups: List[APIGroup] = Field(default_factory=list)


def synthetic_api_group(group: str) -> APIGroup:
    """Build the discovery entry advertising ``group`` at version v1."""
    version = GroupVersionForDiscovery(
        group_version=f'{group}/{SYNTHETIC_GROUP_VERSION}',
        version=SYNTHETIC_GROUP_VERSION,
    )
    return APIGroup(name=group, versions=[version], preferred_version=version)


def add_api_group(group: str, data: bytes) -> bytes:
    """Decode a discovery listing, append the ``group`` entry and re-encode it.

    Raises:
        DiscoveryError: ``data`` is not a valid APIGroupList document
    """
    try:
        group_list = APIGroupList.model_validate_json(data)
    except ValidationError as exc:
        raise DiscoveryError(f'invalid discovery listing: {exc}') from exc

    group_list.groups.append(synthetic_api_group(group))

    try:
        return group_list.model_dump_json(by_alias=True).encode('utf-8')
    except (TypeError, ValueError) as exc:
        raise DiscoveryError(f'failed to encode discovery listing: {exc}') from exc
