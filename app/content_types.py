"""Built-in content types, registered in order at startup."""

from __future__ import annotations

import logging

from nodecms.block_codec import BlockCodecError, decode_blocks, encode_blocks
from type_registry import NodeModel, Registry


logger = logging.getLogger("nodecms.registry")


def _normalize_slug(value):
    return value.strip().lower() if isinstance(value, str) else value


def _set_slug_on_owner(owner: dict, value):
    owner["slug"] = _normalize_slug(value)


def _encode_content(owner: dict, value):
    return encode_blocks(value)


def _decode_content(owner: dict):
    try:
        return decode_blocks(owner.get("content"))
    except BlockCodecError as exc:
        logger.warning("page_content_unreadable id=%s error=%s", owner.get("id"), exc)
        return []


def _slug_field(label: str, description: str, placeholder: str, save) -> dict:
    return {
        "name": "slug",
        "type": "slug",
        "label": label,
        "description": description,
        "placeholder": placeholder,
        "defaultValue": "",
        "validation": {"required": True, "pattern": "^[a-z0-9-]+$", "minLength": 1, "maxLength": 100},
        "ui": {"width": "half", "order": 1},
        "save": save,
    }


def _title_field(label: str, placeholder: str) -> dict:
    return {
        "name": "title",
        "type": "text",
        "label": label,
        "description": "The main title that will appear in the browser and on the page",
        "placeholder": placeholder,
        "defaultValue": "",
        "validation": {"required": True, "minLength": 1, "maxLength": 200},
        "ui": {"width": "half", "order": 2},
    }


PAGE_MODEL = NodeModel(
    table="pages",
    columns={
        "slug": "VARCHAR(100) UNIQUE",
        "title": "VARCHAR(200) NOT NULL",
        "content": "TEXT NOT NULL DEFAULT '[]'",
        "author_id": "INTEGER",
    },
    author_column="author_id",
)

ARTICLE_MODEL = NodeModel(
    table="articles",
    columns={
        "slug": "VARCHAR(100) UNIQUE",
        "title": "VARCHAR(200) NOT NULL",
        "excerpt": "TEXT",
        "content": "TEXT NOT NULL",
        "author_id": "INTEGER",
    },
    author_column="author_id",
)

PAGE_FIELDS = [
    _slug_field(
        "URL Slug",
        "The URL-friendly identifier for this page (e.g., 'about-us')",
        "about-us",
        lambda owner, value: _normalize_slug(value),
    ),
    _title_field("Page Title", "Enter page title..."),
    {
        "name": "content",
        "type": "blocks",
        "label": "Page Content",
        "description": "Blocks that compose the main content of the page",
        "defaultValue": [],
        "ui": {"width": "full", "order": 3},
        "save": _encode_content,
        "load": _decode_content,
    },
]

ARTICLE_FIELDS = [
    _slug_field(
        "Article URL Slug",
        "The URL-friendly identifier for this article (e.g., 'my-first-blog-post')",
        "my-article-title",
        _set_slug_on_owner,
    ),
    _title_field("Article Title", "Enter article title..."),
    {
        "name": "excerpt",
        "type": "textarea",
        "label": "Article Excerpt",
        "description": "A brief summary of the article for previews",
        "placeholder": "Enter a brief excerpt...",
        "rows": 3,
        "validation": {"required": False, "maxLength": 500},
        "ui": {"width": "full", "order": 3},
    },
    {
        "name": "content",
        "type": "textarea",
        "label": "Article Content",
        "description": "The main content of the article (supports Markdown)",
        "placeholder": "Enter article content using Markdown...",
        "rows": 15,
        "validation": {"required": True, "minLength": 50},
        "ui": {"width": "full", "order": 4},
    },
]

_ALIGNMENTS = [
    {"value": "left", "label": "Left"},
    {"value": "center", "label": "Center"},
    {"value": "right", "label": "Right"},
]

BLOCK_TYPES = [
    (
        "text_block",
        {
            "displayName": "Text Block",
            "description": "A simple text content block with formatting options",
            "icon": "text",
            "category": "content",
            "fields": [
                {
                    "type": "textarea",
                    "name": "content",
                    "label": "Content",
                    "description": "The text content for this block",
                    "placeholder": "Enter your text content...",
                    "rows": 6,
                    "validation": {"required": True, "minLength": 1, "maxLength": 5000},
                    "ui": {"width": "full", "order": 1},
                },
                {
                    "type": "select",
                    "name": "alignment",
                    "label": "Text Alignment",
                    "description": "How the text should be aligned",
                    "defaultValue": "left",
                    "options": list(_ALIGNMENTS),
                    "ui": {"width": "half", "order": 2},
                },
            ],
            "settings": {"allowMultiple": True},
        },
    ),
    (
        "image_block",
        {
            "displayName": "Image Block",
            "description": "An image block with caption and alignment options",
            "icon": "image",
            "category": "media",
            "fields": [
                {
                    "type": "file",
                    "name": "image",
                    "label": "Image",
                    "description": "Select an image file",
                    "accept": "image/*",
                    "validation": {"required": True},
                    "ui": {"width": "full", "order": 1},
                },
                {
                    "type": "text",
                    "name": "alt",
                    "label": "Alt Text",
                    "description": "Alternative text for accessibility",
                    "placeholder": "Describe the image...",
                    "validation": {"required": True, "maxLength": 200},
                    "ui": {"width": "full", "order": 2},
                },
                {
                    "type": "text",
                    "name": "caption",
                    "label": "Caption",
                    "description": "Optional caption displayed below the image",
                    "placeholder": "Enter image caption...",
                    "validation": {"maxLength": 500},
                    "ui": {"width": "full", "order": 3},
                },
                {
                    "type": "select",
                    "name": "alignment",
                    "label": "Alignment",
                    "description": "How the image should be aligned",
                    "defaultValue": "center",
                    "options": _ALIGNMENTS + [{"value": "full", "label": "Full Width"}],
                    "ui": {"width": "half", "order": 4},
                },
            ],
            "settings": {"allowMultiple": True},
        },
    ),
    (
        "quote_block",
        {
            "displayName": "Quote Block",
            "description": "A styled quote block with author and source attribution",
            "icon": "quote",
            "category": "content",
            "fields": [
                {
                    "type": "textarea",
                    "name": "quote",
                    "label": "Quote",
                    "description": "The quote text",
                    "placeholder": "Enter the quote...",
                    "rows": 4,
                    "validation": {"required": True, "minLength": 10, "maxLength": 1000},
                    "ui": {"width": "full", "order": 1},
                },
                {
                    "type": "text",
                    "name": "author",
                    "label": "Author",
                    "description": "The person who said or wrote this quote",
                    "placeholder": "Author name...",
                    "validation": {"maxLength": 200},
                    "ui": {"width": "half", "order": 2},
                },
                {
                    "type": "text",
                    "name": "source",
                    "label": "Source",
                    "description": "The source of the quote (book, speech, etc.)",
                    "placeholder": "Source...",
                    "validation": {"maxLength": 200},
                    "ui": {"width": "half", "order": 3},
                },
                {
                    "type": "select",
                    "name": "style",
                    "label": "Quote Style",
                    "description": "Visual style of the quote",
                    "defaultValue": "default",
                    "options": [
                        {"value": "default", "label": "Default"},
                        {"value": "pullquote", "label": "Pull Quote"},
                        {"value": "blockquote", "label": "Block Quote"},
                    ],
                    "ui": {"width": "half", "order": 4},
                },
            ],
            "settings": {"allowMultiple": True},
        },
    ),
    (
        "two_column_block",
        {
            "displayName": "Two Column Block",
            "description": "A flexible two-column layout block",
            "icon": "columns",
            "category": "layout",
            "fields": [
                {
                    "type": "blocks",
                    "name": "leftContent",
                    "label": "Left Column Content",
                    "description": "Content for the left column",
                    "placeholder": "Enter left column content...",
                },
                {
                    "type": "blocks",
                    "name": "rightContent",
                    "label": "Right Column Content",
                    "description": "Content for the right column",
                    "placeholder": "Enter right column content...",
                },
                {
                    "type": "select",
                    "name": "columnRatio",
                    "label": "Column Ratio",
                    "description": "The ratio between left and right columns",
                    "defaultValue": "50-50",
                    "options": [
                        {"value": "50-50", "label": "50% / 50%"},
                        {"value": "60-40", "label": "60% / 40%"},
                        {"value": "40-60", "label": "40% / 60%"},
                        {"value": "70-30", "label": "70% / 30%"},
                        {"value": "30-70", "label": "30% / 70%"},
                    ],
                    "ui": {"width": "half", "order": 3},
                },
            ],
            "settings": {"allowMultiple": True},
        },
    ),
]


def build_registry(strict: bool = True) -> Registry:
    """Register the built-in node and block types.

    Node type order decides path resolution ties, so ``page`` (no subpath)
    comes before ``article`` (subpath ``blog``).
    """
    registry = Registry(strict=strict)
    registry.nodes.register(
        "page",
        PAGE_MODEL,
        {"displayName": "Page", "icon": "📄", "description": "Website pages with customizable content"},
        PAGE_FIELDS,
    )
    registry.nodes.register(
        "article",
        ARTICLE_MODEL,
        {
            "displayName": "Article",
            "icon": "📰",
            "description": "Blog articles and news content",
            "subpath": "blog",
        },
        ARTICLE_FIELDS,
    )
    for name, definition in BLOCK_TYPES:
        registry.blocks.register(name, definition)
    logger.info(
        "content_types_ready nodes=%s blocks=%s",
        len(registry.nodes),
        len(registry.blocks),
    )
    return registry
