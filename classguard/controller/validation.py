"""Schema validation for class objects.

``validate_class`` runs generic object checks plus the validator registered
for the class kind and returns human-readable error strings; an empty list
means valid.  Validators are pure functions of the raw object.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

Validator = Callable[[dict[str, Any]], list[str]]

_DNS1123_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_MAX_NAME_LENGTH = 253

_VALIDATORS: dict[str, Validator] = {}


def register_validator(kind: str, validator: Validator) -> None:
    """Register (or replace) the kind-specific validator for *kind*."""
    _VALIDATORS[kind] = validator


def _lookup(obj: Any, path: str) -> Any:
    node = obj
    for part in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _require_str(spec: dict[str, Any], path: str, errors: list[str]) -> None:
    value = _lookup(spec, path)
    if not isinstance(value, str) or not value.strip():
        errors.append(f"spec.{path}: Required value")


def _validate_metadata(raw: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    metadata = raw.get("metadata")
    if not isinstance(metadata, dict):
        return ["metadata: Required value"]
    name = metadata.get("name")
    if not isinstance(name, str) or not name:
        errors.append("metadata.name: Required value")
    elif len(name) > _MAX_NAME_LENGTH or not _DNS1123_SUBDOMAIN.match(name):
        errors.append(f"metadata.name: Invalid value: {name!r}: must be a DNS-1123 subdomain")
    if not isinstance(raw.get("spec"), dict):
        errors.append("spec: Required value")
    return errors


def _validate_secret_ref(spec: dict[str, Any]) -> list[str]:
    ref = spec.get("secretRef")
    if ref is None:
        return []
    errors: list[str] = []
    if not isinstance(ref, dict):
        return ["spec.secretRef: Invalid value: must be an object"]
    _require_str(spec, "secretRef.name", errors)
    _require_str(spec, "secretRef.namespace", errors)
    return errors


def validate_azure_machine_class(raw: dict[str, Any]) -> list[str]:
    spec = raw.get("spec") or {}
    errors: list[str] = []
    for path in (
        "location",
        "resourceGroup",
        "subnetInfo.vnetName",
        "subnetInfo.subnetName",
        "properties.hardwareProfile.vmSize",
        "properties.osProfile.adminUsername",
    ):
        _require_str(spec, path, errors)

    if not isinstance(spec.get("secretRef"), dict):
        errors.append("spec.secretRef: Required value")

    os_disk = _lookup(spec, "properties.storageProfile.osDisk")
    if isinstance(os_disk, dict):
        size = os_disk.get("diskSizeGB")
        if size is not None and (not isinstance(size, int) or isinstance(size, bool) or size <= 0):
            errors.append("spec.properties.storageProfile.osDisk.diskSizeGB: Invalid value: must be greater than zero")

    public_keys = _lookup(spec, "properties.osProfile.linuxConfiguration.ssh.publicKeys")
    if public_keys is not None:
        if not isinstance(public_keys, dict):
            errors.append("spec.properties.osProfile.linuxConfiguration.ssh.publicKeys: Invalid value")
        else:
            for field_name in ("path", "keyData"):
                if not public_keys.get(field_name):
                    errors.append(
                        f"spec.properties.osProfile.linuxConfiguration.ssh.publicKeys.{field_name}: Required value"
                    )
    return errors


register_validator("AzureMachineClass", validate_azure_machine_class)


def validate_class(raw: dict[str, Any], kind: str) -> list[str]:
    """Return every validation error for a class object of *kind*."""
    errors = _validate_metadata(raw)
    spec = raw.get("spec")
    if not isinstance(spec, dict):
        return errors
    errors.extend(_validate_secret_ref(spec))
    validator = _VALIDATORS.get(kind)
    if validator is not None:
        for error in validator(raw):
            if error not in errors:
                errors.append(error)
    return errors
