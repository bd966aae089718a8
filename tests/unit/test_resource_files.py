import os
import tempfile
import unittest

from locale_sync.resource_files import (
    load_message_file,
    message_object_path,
    parse_message_map,
    relative_storage_key,
    serialize_message_map,
)


class TestResourceFiles(unittest.TestCase):
    def test_parse_flat_message_map(self):
        content = b'{"greet": "Hello, {name}!", "bye": "Bye"}'
        self.assertEqual(parse_message_map(content), {"greet": "Hello, {name}!", "bye": "Bye"})

    def test_parse_tolerates_utf8_bom(self):
        content = '\ufeff{"title": "Café"}'.encode('utf-8')
        self.assertEqual(parse_message_map(content), {"title": "Café"})

    def test_invalid_json_raises_value_error(self):
        with self.assertRaises(ValueError):
            parse_message_map(b'{"greet": ')

    def test_non_string_values_are_rejected(self):
        with self.assertRaises(ValueError):
            parse_message_map('{"nested": {"a": "b"}}')
        with self.assertRaises(ValueError):
            parse_message_map('["not", "an", "object"]')

    def test_round_trip_is_structurally_equal(self):
        messages = {
            "greet": "Hello, {name}!",
            "items": "{count, plural, one {# item} other {# items}}",
            "quote": "It''s \"quoted\" – ünïcödé",
        }
        reloaded = parse_message_map(serialize_message_map(messages))
        self.assertEqual(reloaded, messages)

    def test_serialize_uses_two_space_indent(self):
        self.assertEqual(serialize_message_map({"a": "b"}), '{\n  "a": "b"\n}\n')

    def test_load_message_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'ui.json')
            with open(path, 'w', encoding='utf-8') as f:
                f.write('{"save": "Enregistrer"}')
            self.assertEqual(load_message_file(path), {"save": "Enregistrer"})

    def test_message_object_path(self):
        self.assertEqual(message_object_path('fr', 'ui'), 'locales/fr/ui.json')

    def test_relative_storage_key_uses_forward_slashes(self):
        root = os.path.join('tmp', 'staging')
        path = os.path.join(root, 'locales', 'fr', 'ui.json')
        self.assertEqual(relative_storage_key(path, root), 'locales/fr/ui.json')


if __name__ == '__main__':
    unittest.main()
