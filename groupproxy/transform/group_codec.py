#!/usr/bin/env python3
"""Rewrites the API group embedded in a manifest's ``apiVersion`` field."""
import json
from dataclasses import dataclass
from typing import Any, Dict

from ..core.errors import DecodeError, GroupFormatError

API_VERSION_FIELD = 'apiVersion'


@dataclass(frozen=True)
class GroupVersion:
    """A parsed ``<group>/<version>`` identifier; ``group`` may be empty."""
    group: str
    version: str

    @classmethod
    def parse(cls, value: str) -> 'GroupVersion':
        """Parse ``"<group>/<version>"`` or a bare ``"<version>"``.

        Raises:
            GroupFormatError: the value contains more than one slash.
        """
        if value in ('', '/'):
            return cls(group='', version='')

        parts = value.split('/')
        if len(parts) == 1:
            return cls(group='', version=value)
        if len(parts) == 2:
            return cls(group=parts[0], version=parts[1])
        raise GroupFormatError(f'unexpected GroupVersion string: {value}')

    def with_group(self, group: str) -> 'GroupVersion':
        return GroupVersion(group=group, version=self.version)

    def __str__(self) -> str:
        if self.group:
            return f'{self.group}/{self.version}'
        return self.version


def _reject_constant(name: str):
    raise DecodeError(f'invalid JSON body: {name} is not a JSON value')


def decode_manifest(data: bytes) -> Dict[str, Any]:
    """Decode ``data`` as a single top-level JSON object."""
    try:
        manifest = json.loads(data.decode('utf-8'), parse_constant=_reject_constant)
    except UnicodeDecodeError as exc:
        raise DecodeError(f'body is not valid UTF-8: {exc}') from exc
    except json.JSONDecodeError as exc:
        raise DecodeError(f'invalid JSON body: {exc}') from exc

    if not isinstance(manifest, dict):
        raise DecodeError(f'expected a JSON object, got {type(manifest).__name__}')
    return manifest


def encode_manifest(manifest: Dict[str, Any]) -> bytes:
    try:
        text = json.dumps(manifest, ensure_ascii=False, allow_nan=False, separators=(',', ':'))
    except ValueError as exc:
        # Numbers such as 1e400 decode to inf, which JSON cannot represent
        raise DecodeError(f'body contains an out of range number: {exc}') from exc

    try:
        return text.encode('utf-8')
    except UnicodeEncodeError as exc:
        # Lone surrogate escapes such as "\ud800" decode but have no UTF-8 form
        raise DecodeError(f'body contains an invalid unicode escape: {exc}') from exc


def rewrite_group(target_group: str, data: bytes) -> bytes:
    """Replace the group of the manifest's ``apiVersion`` with ``target_group``.

    An empty ``target_group`` leaves the bare version. Manifests without a
    string ``apiVersion`` are re-encoded unchanged.

    Args:
        target_group: Group to write into ``apiVersion`` ('' strips it)
        data: Raw JSON body

    Returns:
        bytes: The re-encoded manifest

    Raises:
        DecodeError: ``data`` is not a JSON object
        GroupFormatError: ``apiVersion`` is not a valid group-version
    """
    manifest = decode_manifest(data)

    api_version = manifest.get(API_VERSION_FIELD)
    if isinstance(api_version, str):
        group_version = GroupVersion.parse(api_version).with_group(target_group)
        manifest[API_VERSION_FIELD] = str(group_version)

    return encode_manifest(manifest)
