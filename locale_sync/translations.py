"""
Translation loader with a per-process (locale, namespace) cache.

Message files are read from object storage at ``locales/<locale>/<namespace>.json``
the first time a pair is requested and kept until the process restarts. A
missing, unreadable or malformed file is cached as an empty map so that a
broken namespace costs one storage round trip, not one per render.
"""
import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

from locale_sync.errors import StorageError, StorageNotFoundError
from locale_sync.message_format import Translator, compile_messages
from locale_sync.resource_files import message_object_path, parse_message_map
from locale_sync.storage import SupabaseStorage

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = 'default'

MessageMap = Mapping[str, str]

_EMPTY: MessageMap = MappingProxyType({})


def normalize_locale(locale: str) -> str:
    return locale.strip().lower()


def normalize_namespace(namespace: str) -> str:
    return namespace.strip().lower() or DEFAULT_NAMESPACE


class TranslationLoader:
    """Reads message maps from storage and memoizes them per (locale, namespace)."""

    def __init__(self, storage: SupabaseStorage, prefix: str = 'locales'):
        self.storage = storage
        self.prefix = prefix
        self._cache: Dict[Tuple[str, str], MessageMap] = {}

    def cached_keys(self) -> List[Tuple[str, str]]:
        return sorted(self._cache)

    async def get(self, locale: str, namespace: str = DEFAULT_NAMESPACE) -> MessageMap:
        """
        Return the messages of one namespace for one locale.

        Never raises for storage or content problems; those yield an empty map.
        """
        key = (normalize_locale(locale), normalize_namespace(namespace))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        path = message_object_path(key[0], key[1], self.prefix)
        messages = _EMPTY
        try:
            content = await self.storage.download(path)
        except StorageNotFoundError:
            logger.debug("No message file at %s", path)
        except StorageError as exc:
            logger.error("Error downloading %s: %s", path, exc)
        else:
            try:
                messages = MappingProxyType(parse_message_map(content, path))
            except ValueError as exc:
                logger.error("Invalid message file %s: %s", path, exc)

        # Concurrent misses for the same key may both land here with equal maps
        self._cache[key] = messages
        return messages

    async def get_translator(self, locale: str, namespace: str = DEFAULT_NAMESPACE) -> Translator:
        messages = await self.get(locale, namespace)
        return compile_messages(normalize_locale(locale), messages)
