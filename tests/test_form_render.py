import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.content_types import build_registry
from app.form_render import (
    BlockLimitError,
    add_block,
    filter_node_options,
    load_node_options,
    move_block,
    remove_block,
    render_field,
    render_form,
    sort_fields,
    toggle_node,
    update_block_field,
    validate_form,
)
from app.stores import MemoryNodeStore
from nodecms.fields import FieldDefinition
from node_engine import NodeEngine


def _field(**spec) -> FieldDefinition:
    return FieldDefinition.from_dict(spec)


class TestRenderField(unittest.TestCase):
    def setUp(self) -> None:
        registry = build_registry()
        self.block_defs = {name: block.to_dict() for name, block in registry.blocks.list_all()}
        self.content = registry.nodes.get("page").fields[2]

    def test_text_input_is_escaped(self) -> None:
        field = _field(type="text", name="title", label="Title", validation={"required": True, "maxLength": 20})
        html = render_field(field, "<b>hi</b>")
        self.assertIn('name="title"', html)
        self.assertIn(" required", html)
        self.assertIn('maxlength="20"', html)
        self.assertIn("&lt;b&gt;hi&lt;/b&gt;", html)
        self.assertNotIn("<b>hi</b>", html)

    def test_unsupported_type(self) -> None:
        html = render_field({"type": "color", "name": "tint"})
        self.assertIn("Unsupported field type: color", html)

    def test_hidden_field(self) -> None:
        html = render_field(_field(type="text", name="token", ui={"hidden": True}), "abc")
        self.assertEqual(html, '<input type="hidden" name="token" value="abc">')

    def test_select_marks_current_option(self) -> None:
        field = _field(type="select", name="align", options=["left", "right"])
        html = render_field(field, "right")
        self.assertIn('<option value="right" selected>', html)
        self.assertNotIn('<option value="left" selected>', html)

    def test_error_message_shown(self) -> None:
        html = render_field(_field(type="text", name="title"), None, errors={"title": "Title is required"})
        self.assertIn("form-field--error", html)
        self.assertIn("Title is required", html)

    def test_blocks_render_recursively(self) -> None:
        value = [
            {"id": "b1", "type": "quote_block", "data": {"quote": "Ship it"}},
            {"id": "b2", "type": "video_block", "data": {}},
        ]
        html = render_field(self.content, value, block_defs=self.block_defs)
        self.assertIn('data-block-id="b1"', html)
        self.assertIn('data-block-type="quote_block"', html)
        self.assertIn('name="content[0].quote"', html)
        self.assertIn("Ship it", html)
        self.assertIn("Unknown block type: video_block", html)

    def test_nested_blocks_stop_at_depth(self) -> None:
        value = [{"id": "b1", "type": "two_column_block", "data": {"leftContent": [], "rightContent": []}}]
        html = render_field(self.content, value, block_defs=self.block_defs, max_depth=1)
        self.assertIn("Nested blocks are limited to 1 levels", html)
        self.assertIn('data-block-type="two_column_block"', html)

    def test_node_picker(self) -> None:
        field = _field(type="node", name="related", nodeTypes=["page"])
        options = {"related": [{"id": 1, "title": "Home", "nodeType": "page"}]}
        html = render_field(field, {"id": 1, "nodeType": "page"}, node_options=options)
        self.assertIn('<option value="page:1" selected>', html)
        self.assertIn("Home (page)", html)


class TestRenderForm(unittest.TestCase):
    def test_fields_follow_ui_order(self) -> None:
        fields = [
            _field(type="text", name="second", ui={"order": 2}),
            _field(type="text", name="unordered"),
            _field(type="text", name="first", ui={"order": 1}),
        ]
        self.assertEqual([f["name"] for f in sort_fields(fields)], ["first", "second", "unordered"])
        html = render_form(fields, {}, action="/x", title="New thing", submit_label="Create")
        self.assertLess(html.index('name="first"'), html.index('name="second"'))
        self.assertLess(html.index('name="second"'), html.index('name="unordered"'))
        self.assertIn('action="/x"', html)
        self.assertIn("<h2>New thing</h2>", html)
        self.assertIn("Create</button>", html)


class TestBlockListEditing(unittest.TestCase):
    def setUp(self) -> None:
        registry = build_registry()
        self.text_def = registry.blocks.describe("text_block")

    def test_add_block_fills_defaults(self) -> None:
        blocks = add_block([], "text_block", block_def=self.text_def)
        self.assertEqual(len(blocks), 1)
        self.assertEqual(blocks[0]["type"], "text_block")
        self.assertEqual(blocks[0]["data"], {"alignment": "left"})
        self.assertTrue(blocks[0]["id"].startswith("block-"))

    def test_add_block_limits(self) -> None:
        field = _field(type="blocks", name="content", allowedBlocks=["text_block"], maxBlocks=1)
        with self.assertRaises(BlockLimitError):
            add_block([], "quote_block", field)
        blocks = add_block([], "text_block", field)
        with self.assertRaises(BlockLimitError):
            add_block(blocks, "text_block", field)

    def test_edits_keep_ids_and_inputs(self) -> None:
        original = [
            {"id": "a", "type": "text_block", "data": {"content": "one"}},
            {"id": "b", "type": "text_block", "data": {"content": "two"}},
        ]
        moved = move_block(original, "b", "up")
        self.assertEqual([b["id"] for b in moved], ["b", "a"])
        self.assertEqual([b["id"] for b in original], ["a", "b"])
        self.assertEqual(move_block(original, "a", "up"), original)
        self.assertEqual([b["id"] for b in remove_block(original, "a")], ["b"])
        updated = update_block_field(original, "b", "content", "changed")
        self.assertEqual(updated[1], {"id": "b", "type": "text_block", "data": {"content": "changed"}})
        self.assertEqual(original[1]["data"]["content"], "two")


class TestNodeSelection(unittest.TestCase):
    def test_toggle(self) -> None:
        node = {"id": 3, "nodeType": "page", "title": "About"}
        self.assertEqual(toggle_node(None, node, multiple=False), {"id": 3, "nodeType": "page", "title": "About"})
        selected = toggle_node([], node, multiple=True)
        self.assertEqual(selected, [{"id": 3, "nodeType": "page", "title": "About"}])
        self.assertEqual(toggle_node(selected, node, multiple=True), [])

    def test_filter(self) -> None:
        options = [{"id": 1, "title": "About"}, {"id": 2, "title": "Contact"}]
        self.assertEqual(filter_node_options(options, "cont"), [{"id": 2, "title": "Contact"}])
        self.assertEqual(filter_node_options(options, ""), options)


class TestLoadNodeOptions(unittest.IsolatedAsyncioTestCase):
    async def test_options_skip_unknown_types(self) -> None:
        engine = NodeEngine(build_registry(), MemoryNodeStore())
        await engine.create("page", {"slug": "about", "title": "About"})
        await engine.create("page", {"slug": "contact", "title": "Contact"})
        field = {"type": "node", "name": "related", "nodeTypes": ["page", "video"]}
        with self.assertLogs("nodecms.forms", level="WARNING"):
            options = await load_node_options(engine, field)
        self.assertEqual({o["title"] for o in options}, {"About", "Contact"})
        self.assertEqual(await load_node_options(engine, field, "abo"), [{"id": 1, "title": "About", "nodeType": "page"}])


class TestValidateForm(unittest.TestCase):
    def test_first_message_per_field(self) -> None:
        fields = [
            _field(type="text", name="title", validation={"required": True}),
            _field(type="text", name="slug", validation={"minLength": 3, "pattern": "^[a-z]+$"}),
            _field(type="text", name="note"),
        ]
        errors = validate_form(fields, {"slug": "A"})
        self.assertEqual(
            errors,
            {
                "title": "Field 'title' is required",
                "slug": "Field 'slug' must be at least 3 characters long",
            },
        )


if __name__ == "__main__":
    unittest.main()
