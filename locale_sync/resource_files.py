import json
import os
from typing import Dict, Union

import jsonschema

# A message file is a flat JSON object whose values are all message templates.
LOCALIZATION_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^.*$": {"type": "string"}
    },
    "additionalProperties": False
}


def parse_message_map(content: Union[bytes, str], source_name: str = '<memory>') -> Dict[str, str]:
    """
    Parse the content of a JSON message file.

    Args:
        content: Raw file content, bytes are decoded as UTF-8 (a BOM is tolerated).
        source_name: Used in error messages only.

    Returns:
        Dict[str, str]: The message key to template mapping.

    Raises:
        ValueError: If the content is not JSON or not a flat key to string object.
    """
    if isinstance(content, bytes):
        try:
            content = content.decode('utf-8-sig')
        except UnicodeDecodeError as exc:
            raise ValueError(f"'{source_name}' is not valid UTF-8: {exc}") from exc

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValueError(f"'{source_name}' is not valid JSON: {exc}") from exc

    try:
        jsonschema.validate(instance=data, schema=LOCALIZATION_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise ValueError(f"'{source_name}' is not a flat message map: {exc.message}") from exc

    return data


def serialize_message_map(messages: Dict[str, str]) -> str:
    """Serialize a message map the way the platform exports it (two-space indent)."""
    return json.dumps(dict(messages), ensure_ascii=False, indent=2) + '\n'


def load_message_file(file_path: str) -> Dict[str, str]:
    with open(file_path, 'rb') as file:
        return parse_message_map(file.read(), file_path)


def message_object_path(locale: str, namespace: str, prefix: str = 'locales') -> str:
    """Storage path of one (locale, namespace) message file."""
    return f"{prefix}/{locale}/{namespace}.json"


def relative_storage_key(file_path: str, root: str) -> str:
    """
    Mirror a staged file's location as an object key.

    The key is the path relative to ``root`` with every separator turned into '/'.
    """
    rel_path = os.path.relpath(file_path, root)
    return rel_path.replace(os.sep, '/').replace('\\', '/')
