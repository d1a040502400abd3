import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.field_validation import field_violations, validate_fields
from nodecms.fields import FieldDefinition, parse_fields
from type_registry import Registry


def _field(**spec) -> FieldDefinition:
    return FieldDefinition.from_dict(spec)


class TestFieldViolations(unittest.TestCase):
    def test_required(self) -> None:
        field = _field(type="text", name="title", validation={"required": True})
        self.assertEqual(field_violations(field, None), ["Field 'title' is required"])
        self.assertEqual(field_violations(field, ""), ["Field 'title' is required"])

    def test_optional_empty_skipped(self) -> None:
        field = _field(type="number", name="n", validation={"min": 5})
        self.assertEqual(field_violations(field, None), [])

    def test_string_rules(self) -> None:
        field = _field(type="text", name="t", validation={"minLength": 3, "maxLength": 5, "pattern": "^[a-z]+$"})
        self.assertEqual(field_violations(field, 12), ["Field 't' must be a string"])
        self.assertEqual(field_violations(field, "ab"), ["Field 't' must be at least 3 characters long"])
        self.assertEqual(field_violations(field, "abcdef"), ["Field 't' must be no more than 5 characters long"])
        self.assertEqual(field_violations(field, "AB1"), ["Field 't' does not match the required pattern"])
        self.assertEqual(field_violations(field, "abcd"), [])

    def test_slug_default_pattern(self) -> None:
        field = _field(type="slug", name="slug")
        self.assertEqual(field_violations(field, "My Slug"), ["Field 'slug' does not match the required pattern"])
        self.assertEqual(field_violations(field, "my-slug-2"), [])

    def test_number_rules(self) -> None:
        field = _field(type="number", name="n", validation={"min": 0, "max": 10})
        self.assertEqual(field_violations(field, True), ["Field 'n' must be a number"])
        self.assertEqual(field_violations(field, "3"), ["Field 'n' must be a number"])
        self.assertEqual(field_violations(field, -1), ["Field 'n' must be at least 0"])
        self.assertEqual(field_violations(field, 11.5), ["Field 'n' must be no more than 10"])
        self.assertEqual(field_violations(field, 0), [])

    def test_boolean(self) -> None:
        field = _field(type="boolean", name="b")
        self.assertEqual(field_violations(field, "yes"), ["Field 'b' must be a boolean"])
        self.assertEqual(field_violations(field, False), [])

    def test_select(self) -> None:
        field = _field(type="select", name="align", options=["left", "right"])
        self.assertEqual(field_violations(field, "center"), ["Field 'align' must be one of ['left', 'right']"])
        self.assertEqual(field_violations(field, "left"), [])

    def test_email_and_url(self) -> None:
        email = _field(type="email", name="mail")
        self.assertEqual(field_violations(email, "nope"), ["Field 'mail' must be a valid email address"])
        self.assertEqual(field_violations(email, "a@b.io"), [])
        url = _field(type="url", name="link")
        self.assertEqual(field_violations(url, "ftp://x.org"), ["Field 'link' must be a valid URL"])
        self.assertEqual(field_violations(url, "https://example.com/a"), [])

    def test_site_relative_url(self) -> None:
        url = _field(type="url", name="link")
        self.assertEqual(field_violations(url, "/about"), [])
        self.assertEqual(field_violations(url, "/blog/hello-world?ref=nav#top"), [])
        for bad in ("//evil.example.com/x", "about", "javascript:alert(1)"):
            self.assertEqual(field_violations(url, bad), ["Field 'link' must be a valid URL"])

    def test_date(self) -> None:
        field = _field(type="date", name="d")
        self.assertEqual(field_violations(field, "2024-01-31"), [])
        self.assertEqual(field_violations(field, "2024-01-31T10:00:00Z"), [])
        self.assertEqual(field_violations(field, "31/01/2024"), ["Field 'd' must be an ISO-8601 date"])

    def test_node_reference(self) -> None:
        single = _field(type="node", name="related")
        self.assertEqual(
            field_violations(single, {"id": 1}),
            ["Field 'related' must be a valid node reference (must have id and nodeType)"],
        )
        self.assertEqual(field_violations(single, {"id": 1, "nodeType": "page"}), [])
        many = _field(type="node", name="related", multiple=True, nodeTypes=["article"])
        self.assertEqual(field_violations(many, {"id": 1, "nodeType": "article"}), ["Field 'related' must be an array of nodes"])
        self.assertEqual(
            field_violations(many, [{"id": 1, "nodeType": "article"}, {"id": 2}]),
            ["Field 'related' contains invalid node reference at position 2 (must have id and nodeType)"],
        )
        self.assertEqual(
            field_violations(many, [{"id": 1, "nodeType": "page"}]),
            ["Field 'related' does not accept node type 'page'"],
        )

    def test_array(self) -> None:
        field = _field(type="array", name="tags", itemType="text", minItems=2)
        self.assertEqual(field_violations(field, "a"), ["Field 'tags' must be an array"])
        self.assertEqual(field_violations(field, ["a"]), ["Field 'tags' must have at least 2 items"])
        self.assertEqual(field_violations(field, ["a", 3]), ["Field 'tags[1]' must be of type text"])


class TestValidateFields(unittest.IsolatedAsyncioTestCase):
    async def test_violations_in_declaration_order(self) -> None:
        fields = parse_fields(
            [
                {"type": "text", "name": "title", "validation": {"required": True}},
                {"type": "slug", "name": "slug", "validation": {"required": True}},
            ]
        )
        errors = await validate_fields(fields, {})
        self.assertEqual(errors, ["Field 'title' is required", "Field 'slug' is required"])

    async def test_payload_must_be_object(self) -> None:
        self.assertEqual(await validate_fields([], []), ["Payload must be an object"])

    async def test_custom_message(self) -> None:
        fields = parse_fields(
            [{"type": "number", "name": "n", "validation": {"custom": lambda v: True if v % 2 == 0 else "must be even"}}]
        )
        self.assertEqual(await validate_fields(fields, {"n": 3}), ["Field 'n' must be even"])
        self.assertEqual(await validate_fields(fields, {"n": 4}), [])

    async def test_async_custom_false(self) -> None:
        async def check(value):
            return False

        fields = parse_fields([{"type": "text", "name": "t", "validation": {"custom": check}}])
        self.assertEqual(await validate_fields(fields, {"t": "x"}), ["Field 't' failed custom validation"])

    async def test_custom_exception_becomes_violation(self) -> None:
        def check(value):
            raise ValueError("boom")

        fields = parse_fields([{"type": "text", "name": "t", "validation": {"custom": check}}])
        self.assertEqual(await validate_fields(fields, {"t": "x"}), ["Field 't' custom validation error: boom"])


class TestBlockValidation(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        registry = Registry()
        registry.blocks.register(
            "quote_block",
            {
                "displayName": "Quote",
                "fields": [{"type": "textarea", "name": "quote", "validation": {"required": True, "minLength": 10}}],
                "settings": {"allowMultiple": False},
            },
        )
        registry.blocks.register(
            "image_block",
            {
                "displayName": "Image",
                "fields": [{"type": "text", "name": "alt"}],
                "settings": {"maxInstances": 2},
            },
        )
        registry.blocks.register(
            "column_block",
            {"displayName": "Column", "fields": [{"type": "blocks", "name": "children"}]},
        )
        self.blocks = registry.blocks

    async def _check(self, value, **field_extra):
        fields = parse_fields([dict({"type": "blocks", "name": "content"}, **field_extra)])
        return await validate_fields(fields, {"content": value}, self.blocks)

    async def test_nested_path_in_message(self) -> None:
        errors = await self._check([{"id": "b1", "type": "quote_block", "data": {"quote": "short"}}])
        self.assertEqual(errors, ["Field 'content[0].quote' must be at least 10 characters long"])

    async def test_unknown_block_type(self) -> None:
        errors = await self._check([{"id": "b1", "type": "video_block", "data": {}}])
        self.assertEqual(errors, ["Field 'content' uses unknown block type 'video_block'"])

    async def test_allow_multiple(self) -> None:
        quote = {"type": "quote_block", "data": {"quote": "long enough quote"}}
        errors = await self._check([dict(quote, id="b1"), dict(quote, id="b2")])
        self.assertEqual(errors, ["Field 'content' allows only one 'quote_block' block"])

    async def test_max_instances(self) -> None:
        errors = await self._check([{"id": f"b{i}", "type": "image_block", "data": {}} for i in range(3)])
        self.assertEqual(errors, ["Field 'content' allows at most 2 'image_block' blocks"])

    async def test_allowed_blocks_and_max_blocks(self) -> None:
        errors = await self._check(
            [{"id": "b1", "type": "image_block", "data": {}}, {"id": "b2", "type": "image_block", "data": {}}],
            allowedBlocks=["quote_block"],
            maxBlocks=1,
        )
        self.assertIn("Field 'content' must have no more than 1 blocks", errors)
        self.assertIn("Field 'content[0]' block type 'image_block' is not allowed here", errors)

    async def test_block_shape(self) -> None:
        errors = await self._check([{"type": "image_block", "data": {}}, "text"])
        self.assertEqual(errors, ["Field 'content[0]' must have a string id", "Field 'content[1]' must be a block object"])

    async def test_depth_limit(self) -> None:
        fields = parse_fields([{"type": "blocks", "name": "content"}])
        inner = {"id": "b2", "type": "column_block", "data": {"children": []}}
        outer = {"id": "b1", "type": "column_block", "data": {"children": [inner]}}
        errors = await validate_fields(fields, {"content": [outer]}, self.blocks, max_depth=1)
        self.assertEqual(errors, ["Field 'content[0].children' exceeds the maximum block nesting depth of 1"])
        self.assertEqual(await validate_fields(fields, {"content": [outer]}, self.blocks, max_depth=3), [])


if __name__ == "__main__":
    unittest.main()
