"""Per-category upload policy, compiled in and checked once at startup."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Union

from .exceptions import ConfigurationError
from .interfaces import StorageCategory, Visibility

MB = 1024 * 1024


@dataclass(frozen=True)
class CategoryPolicy:
    category: StorageCategory
    folder: str  # directory / bucket / drive folder name
    visibility: Visibility
    max_bytes: int
    allowed_mime_types: FrozenSet[str]

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC


DEFAULT_CATEGORY_POLICIES = (
    CategoryPolicy(
        category=StorageCategory.AVATAR,
        folder='avatars',
        visibility=Visibility.PUBLIC,
        max_bytes=5 * MB,
        allowed_mime_types=frozenset({'image/jpeg', 'image/png', 'image/webp'}),
    ),
    CategoryPolicy(
        category=StorageCategory.RECORDING,
        folder='recordings',
        visibility=Visibility.PRIVATE,
        max_bytes=50 * MB,
        allowed_mime_types=frozenset({
            'audio/mpeg', 'audio/mp3', 'audio/wav', 'audio/ogg', 'audio/mp4', 'audio/m4a',
        }),
    ),
    CategoryPolicy(
        category=StorageCategory.SEQUENCE,
        folder='sequences',
        visibility=Visibility.PRIVATE,
        max_bytes=10 * MB,
        allowed_mime_types=frozenset({'application/pdf', 'image/jpeg', 'image/png', 'text/plain'}),
    ),
    CategoryPolicy(
        category=StorageCategory.MULTIMEDIA,
        folder='multimedia',
        visibility=Visibility.PUBLIC,
        max_bytes=20 * MB,
        allowed_mime_types=frozenset({'image/jpeg', 'image/png', 'image/webp', 'image/gif'}),
    ),
)


def coerce_category(value: Union[StorageCategory, str]) -> StorageCategory:
    if isinstance(value, StorageCategory):
        return value
    try:
        return StorageCategory(str(value).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown storage category: {value!r}", category=str(value)) from exc


class CategoryPolicyTable:
    """Immutable lookup of category policies.

    Every category must have exactly one entry and folder names must be unique,
    otherwise construction raises ConfigurationError.
    """

    def __init__(self, policies: Iterable[CategoryPolicy] = DEFAULT_CATEGORY_POLICIES):
        by_category: Dict[StorageCategory, CategoryPolicy] = {}
        by_folder: Dict[str, CategoryPolicy] = {}
        for policy in policies:
            if policy.category in by_category:
                raise ConfigurationError('Duplicate category policy', category=policy.category.value)
            if policy.folder in by_folder:
                raise ConfigurationError(
                    f"Folder '{policy.folder}' is shared by several categories", category=policy.category.value
                )
            if not policy.folder or '/' in policy.folder or policy.folder in ('.', '..'):
                raise ConfigurationError(f"Invalid folder name: {policy.folder!r}", category=policy.category.value)
            by_category[policy.category] = policy
            by_folder[policy.folder] = policy

        missing = [c.value for c in StorageCategory if c not in by_category]
        if missing:
            raise ConfigurationError(f"Missing category policies: {', '.join(missing)}")

        self._by_category: Mapping[StorageCategory, CategoryPolicy] = MappingProxyType(by_category)
        self._by_folder: Mapping[str, CategoryPolicy] = MappingProxyType(by_folder)

    def get(self, category: Union[StorageCategory, str]) -> CategoryPolicy:
        category = coerce_category(category)
        try:
            return self._by_category[category]
        except KeyError as exc:
            raise ConfigurationError('No policy for category', category=category.value) from exc

    def for_folder(self, folder: str) -> CategoryPolicy:
        try:
            return self._by_folder[folder]
        except KeyError as exc:
            raise ConfigurationError(f"No category uses folder '{folder}'") from exc

    def has_folder(self, folder: str) -> bool:
        return folder in self._by_folder

    def visibility_map(self) -> Dict[str, Visibility]:
        """Folder name -> declared visibility."""
        return {folder: policy.visibility for folder, policy in self._by_folder.items()}

    def __iter__(self):
        return iter(self._by_category.values())

    def __len__(self) -> int:
        return len(self._by_category)
