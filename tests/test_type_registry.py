import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from type_registry import DuplicateTypeError, NodeModel, Registry


def _model(table: str) -> NodeModel:
    return NodeModel(table=table, columns={"slug": "TEXT", "title": "TEXT"})


SLUG = {"type": "slug", "name": "slug"}
TITLE = {"type": "text", "name": "title"}


class TestNodeRegistry(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = Registry()
        self.nodes = self.registry.nodes

    def test_register_and_lookup(self) -> None:
        self.nodes.register("page", _model("pages"), {"displayName": "Page"}, [SLUG, TITLE])
        self.nodes.register("article", _model("articles"), {"subpath": "/blog/"}, [SLUG, TITLE])
        self.assertTrue(self.nodes.is_registered("page"))
        self.assertFalse(self.nodes.is_registered("missing"))
        self.assertIsNone(self.nodes.get("missing"))
        self.assertEqual(self.nodes.fields("missing"), [])
        self.assertEqual([name for name, _ in self.nodes.list_all()], ["page", "article"])
        self.assertEqual(self.nodes.get("article").settings.subpath, "blog")

    def test_duplicate_last_write_wins(self) -> None:
        self.nodes.register("page", _model("pages"), None, [TITLE])
        self.nodes.register("article", _model("articles"), None, [TITLE])
        with self.assertLogs("nodecms.registry", level="WARNING") as logs:
            self.nodes.register("page", _model("pages_v2"), None, [SLUG, TITLE])
        self.assertIn("node_type_replaced type=page", logs.output[0])
        self.assertEqual(self.nodes.get("page").model.table, "pages_v2")
        self.assertEqual([name for name, _ in self.nodes.list_all()], ["page", "article"])

    def test_strict_rejects_duplicates(self) -> None:
        strict = Registry(strict=True)
        strict.nodes.register("page", _model("pages"), None, [TITLE])
        with self.assertRaises(DuplicateTypeError):
            strict.nodes.register("page", _model("pages"), None, [TITLE])
        strict.blocks.register("text_block", {"displayName": "Text"})
        with self.assertRaises(DuplicateTypeError):
            strict.blocks.register("text_block", {"displayName": "Text"})

    def test_slug_field_is_first_slug(self) -> None:
        self.nodes.register("page", _model("pages"), None, [TITLE, SLUG, {"type": "slug", "name": "alias"}])
        self.assertEqual(self.nodes.get_slug_field("page").name, "slug")
        self.nodes.register("note", _model("notes"), None, [TITLE])
        self.assertIsNone(self.nodes.get_slug_field("note"))

    def test_generate_url(self) -> None:
        self.nodes.register("page", _model("pages"), None, [SLUG, TITLE])
        self.nodes.register("article", _model("articles"), {"subpath": "blog"}, [SLUG, TITLE])
        self.nodes.register("note", _model("notes"), None, [TITLE])
        self.assertEqual(self.nodes.generate_url("article", {"slug": "x"}), "/blog/x")
        self.assertEqual(self.nodes.generate_url("page", {"slug": "about"}), "/about")
        self.assertIsNone(self.nodes.generate_url("page", {"slug": ""}))
        self.assertIsNone(self.nodes.generate_url("note", {"title": "n"}))
        self.assertIsNone(self.nodes.generate_url("missing", {"slug": "x"}))

    def test_describe(self) -> None:
        self.nodes.register("article", _model("articles"), {"displayName": "Article", "subpath": "blog"}, [SLUG])
        described = self.nodes.describe("article")
        self.assertEqual(described["type"], "article")
        self.assertEqual(described["settings"], {"displayName": "Article", "subpath": "blog"})
        self.assertEqual(described["fields"][0]["name"], "slug")
        self.assertIsNone(self.nodes.describe("missing"))


class TestBlockRegistry(unittest.TestCase):
    def test_register_block(self) -> None:
        registry = Registry()
        registry.blocks.register(
            "quote_block",
            {
                "displayName": "Quote Block",
                "category": "content",
                "fields": [{"type": "textarea", "name": "quote"}],
                "settings": {"allowMultiple": False, "maxInstances": 1},
            },
        )
        block = registry.blocks.get("quote_block")
        self.assertFalse(block.settings.allow_multiple)
        self.assertEqual(registry.blocks.fields("quote_block")[0].name, "quote")
        described = registry.blocks.describe("quote_block")
        self.assertEqual(described["displayName"], "Quote Block")
        self.assertEqual(described["settings"], {"allowMultiple": False, "deprecated": False, "maxInstances": 1})


if __name__ == "__main__":
    unittest.main()
