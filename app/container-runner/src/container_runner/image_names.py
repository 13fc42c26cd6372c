from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import InvalidImageReference

_MAX_NAME_LENGTH = 255
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:\.|_|__|-+)[a-z0-9]+)*$")
_REGISTRY_RE = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*"
    r"(?::[0-9]+)?$"
)
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]{32,}$")
_SHA256_RE = re.compile(r"^sha256:[a-f0-9]{64}$")

DEFAULT_TAG = "latest"


@dataclass(frozen=True)
class ImageValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def split_image_reference(reference: str) -> tuple[str, str | None, str | None]:
    """Split ``[registry/]repository[:tag][@digest]`` into name, tag, digest."""
    name = reference
    digest: str | None = None
    if "@" in name:
        name, digest = name.split("@", 1)
    tag: str | None = None
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon > last_slash:
        name, tag = name[:last_colon], name[last_colon + 1 :]
    return name, tag, digest


def pull_reference(reference: str) -> tuple[str, str]:
    name, tag, digest = split_image_reference(reference.strip())
    return name, digest or tag or DEFAULT_TAG


def validate_image_name(reference: str) -> ImageValidation:
    errors: list[str] = []
    raw = reference if isinstance(reference, str) else ""
    if not raw.strip():
        return ImageValidation(False, ["Image name cannot be empty"])
    if any(ch.isspace() for ch in raw):
        errors.append("Image name must not contain whitespace")

    name, tag, digest = split_image_reference(raw.strip())
    if len(name) > _MAX_NAME_LENGTH:
        errors.append(f"Image name must be at most {_MAX_NAME_LENGTH} characters")

    components = name.split("/") if name else [""]
    if len(components) > 1 and _looks_like_registry(components[0]):
        registry, path_components = components[0], components[1:]
        if not _REGISTRY_RE.match(registry):
            errors.append(f"Invalid registry host '{registry}'")
    else:
        path_components = components

    repository = "/".join(path_components)
    if not repository:
        errors.append("Repository name cannot be empty")
    else:
        if repository != repository.lower():
            errors.append(f"Repository '{repository}' must be lowercase")
        for component in path_components:
            if not component:
                errors.append("Repository path contains an empty component")
                break
            if not _COMPONENT_RE.match(component.lower().strip()):
                errors.append(
                    f"Invalid repository component '{component}' "
                    "(allowed: lowercase letters, digits, '.', '_', '-')"
                )

    if tag is not None and not _TAG_RE.match(tag):
        errors.append(
            f"Invalid tag '{tag}' (allowed: letters, digits, '.', '_', '-'; max 128 chars)"
        )
    if digest is not None:
        if digest.startswith("sha256:"):
            if not _SHA256_RE.match(digest):
                errors.append("Invalid sha256 digest (expected 64 lowercase hex characters)")
        elif not _DIGEST_RE.match(digest):
            errors.append(f"Invalid digest '{digest}'")

    return ImageValidation(not errors, errors)


def ensure_valid_image(reference: str) -> None:
    validation = validate_image_name(reference)
    if not validation.valid:
        raise InvalidImageReference(reference, validation.errors)
