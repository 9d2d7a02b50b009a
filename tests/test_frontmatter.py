"""Tests for markdown front matter parsing."""

import pytest

from kpgb.core.frontmatter import parse_frontmatter


DOCUMENT = """---
title: Hello IPFS
author: alice
date: 2024-01-01
tags: [ipfs, web3]
category: Technology
published: true
---

# Hello

Body text.
"""


def test_parses_front_matter_and_body():
    frontmatter, body = parse_frontmatter(DOCUMENT)

    assert frontmatter is not None
    assert frontmatter.title == "Hello IPFS"
    assert frontmatter.author == "alice"
    assert frontmatter.date == "2024-01-01"
    assert frontmatter.tags == ["ipfs", "web3"]
    assert frontmatter.category == "Technology"
    assert frontmatter.published is True
    assert body == "# Hello\n\nBody text."


def test_comma_separated_tags():
    frontmatter, _ = parse_frontmatter("---\ntitle: T\nauthor: A\ntags: rust, ipfs ,, web\n---\nbody")
    assert frontmatter.tags == ["rust", "ipfs", "web"]


def test_optional_fields_default():
    frontmatter, body = parse_frontmatter("---\ntitle: T\nauthor: A\n---\nbody")
    assert frontmatter.tags == []
    assert frontmatter.slug is None
    assert frontmatter.published is None
    assert body == "body"


def test_no_front_matter():
    text = "# Just markdown\n\nNo header here."
    frontmatter, body = parse_frontmatter(text)
    assert frontmatter is None
    assert body == text


def test_unclosed_block():
    with pytest.raises(ValueError, match="Unclosed frontmatter block"):
        parse_frontmatter("---\ntitle: T\nauthor: A\n\nbody without closing")


def test_missing_required_field():
    with pytest.raises(ValueError, match="Failed to parse frontmatter"):
        parse_frontmatter("---\ntitle: T\n---\nbody")


def test_not_a_mapping():
    with pytest.raises(ValueError, match="expected a mapping"):
        parse_frontmatter("---\n- a\n- b\n---\nbody")


def test_invalid_yaml():
    with pytest.raises(ValueError, match="Failed to parse frontmatter"):
        parse_frontmatter("---\ntitle: [unclosed\n---\nbody")
