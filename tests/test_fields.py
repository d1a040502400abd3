import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from nodecms.fields import FieldDefinition, FieldType, SchemaError, find_field, parse_fields


class TestFieldDefinition(unittest.TestCase):
    def test_camel_case_declaration(self) -> None:
        field = FieldDefinition.from_dict(
            {
                "type": "text",
                "name": "title",
                "defaultValue": "Untitled",
                "validation": {"required": True, "minLength": 2, "maxLength": 20},
                "ui": {"order": 2, "className": "wide"},
            }
        )
        self.assertEqual(field.type, FieldType.TEXT)
        self.assertTrue(field.required)
        self.assertEqual(field.validation.min_length, 2)
        self.assertEqual(field.validation.max_length, 20)
        self.assertEqual(field.default, "Untitled")
        self.assertEqual(field.ui.class_name, "wide")

    def test_unknown_key_rejected(self) -> None:
        with self.assertRaises(SchemaError):
            FieldDefinition.from_dict({"type": "text", "name": "a", "colour": "red"})

    def test_unknown_type_rejected(self) -> None:
        with self.assertRaises(SchemaError):
            FieldDefinition.from_dict({"type": "color", "name": "a"})

    def test_select_needs_options(self) -> None:
        with self.assertRaises(SchemaError):
            FieldDefinition.from_dict({"type": "select", "name": "a"})

    def test_select_options_normalized(self) -> None:
        field = FieldDefinition.from_dict({"type": "select", "name": "a", "options": ["x", {"value": "y", "label": "Why"}]})
        self.assertEqual([o.value for o in field.options], ["x", "y"])
        self.assertEqual(field.options[1].label, "Why")

    def test_array_rules(self) -> None:
        with self.assertRaises(SchemaError):
            FieldDefinition.from_dict({"type": "array", "name": "tags"})
        with self.assertRaises(SchemaError):
            FieldDefinition.from_dict({"type": "array", "name": "tags", "itemType": "array"})
        field = FieldDefinition.from_dict({"type": "array", "name": "tags", "itemType": "text", "maxItems": 3})
        self.assertEqual(field.item_type, FieldType.TEXT)
        self.assertEqual(field.max_items, 3)

    def test_invalid_pattern_rejected(self) -> None:
        with self.assertRaises(SchemaError):
            FieldDefinition.from_dict({"type": "text", "name": "a", "validation": {"pattern": "(["}})

    def test_wire_form_strips_hooks(self) -> None:
        field = FieldDefinition.from_dict(
            {
                "type": "slug",
                "name": "slug",
                "validation": {"required": True, "minLength": 1},
                "save": lambda owner, value: value.lower(),
                "load": lambda owner: owner.get("slug"),
            }
        )
        wire = field.to_dict()
        self.assertNotIn("save", wire)
        self.assertNotIn("load", wire)
        self.assertEqual(wire["validation"], {"required": True, "minLength": 1})
        reparsed = FieldDefinition.from_dict(wire)
        self.assertEqual(reparsed.type, FieldType.SLUG)
        self.assertEqual(reparsed.validation.min_length, 1)

    def test_blocks_wire_form(self) -> None:
        field = FieldDefinition.from_dict({"type": "blocks", "name": "content", "allowedBlocks": ["text_block"], "maxBlocks": 3})
        wire = field.to_dict()
        self.assertEqual(wire["allowedBlocks"], ["text_block"])
        self.assertEqual(wire["maxBlocks"], 3)


class TestParseFields(unittest.TestCase):
    def test_duplicate_names_rejected(self) -> None:
        with self.assertRaises(SchemaError):
            parse_fields([{"type": "text", "name": "a"}, {"type": "number", "name": "a"}], owner="node type x")

    def test_none_is_empty(self) -> None:
        self.assertEqual(parse_fields(None), [])

    def test_find_field(self) -> None:
        fields = parse_fields([{"type": "text", "name": "a"}, {"type": "number", "name": "b"}])
        self.assertEqual(find_field(fields, "b").type, FieldType.NUMBER)
        self.assertIsNone(find_field(fields, "c"))


if __name__ == "__main__":
    unittest.main()
