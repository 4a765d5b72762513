"""
Tests for keyword extraction and markdown export.
"""
import pytest

from services.export import (
    export_task,
    extract_keywords,
    generate_implementation_markdown,
    sanitize_file_name,
)


def test_keywords_drop_stop_words_short_words_and_duplicates():
    keywords = extract_keywords("Fix the login form", "The login form is broken on iOS")
    assert keywords == ["fix", "login", "form", "broken", "ios"]


def test_keywords_limit():
    words = " ".join(f"word{i}" for i in range(20))
    assert len(extract_keywords(words, None)) == 10


def test_keywords_tolerate_missing_description():
    assert extract_keywords("Payment gateway", None) == ["payment", "gateway"]


def test_sanitize_file_name():
    assert sanitize_file_name("Fix: Login/Form (v2)!") == "fix__login_form__v2__"
    assert len(sanitize_file_name("x" * 80)) == 50


@pytest.mark.asyncio
async def test_markdown_lists_related_tasks(store):
    task = await store.create({"title": "Payment gateway", "description": "Add retries",
                               "project": "Billing", "external_id": "77"})
    other = await store.create({"title": "Gateway timeout", "status": "Open"})

    md = generate_implementation_markdown(task, [other])

    assert md.startswith("# Task Implementation: Payment gateway\n")
    assert "- **External ID**: 77" in md
    assert "- **Project**: Billing" in md
    assert "Add retries" in md
    assert f"- [Task {other.id}] Gateway timeout (Open)" in md


@pytest.mark.asyncio
async def test_markdown_without_related_or_description(store):
    task = await store.create({"title": "Bare"})

    md = generate_implementation_markdown(task, [])

    assert "No related tasks found" in md
    assert "No description provided" in md
    assert "- **External ID**: N/A" in md


@pytest.mark.asyncio
async def test_export_writes_file(store, tmp_path):
    task = await store.create({"title": "Fix Login Form"})

    path = export_task(task, [], tmp_path / "exports")

    assert path.name == f"IMPLEMENTACION_{task.id}_fix_login_form.md"
    assert path.read_text(encoding="utf-8").startswith("# Task Implementation: Fix Login Form")
