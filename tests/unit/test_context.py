"""Tests for the shared execution context."""

import pytest

from computeflow.context import ExecutionContext, MissingContextValue


def test_context_writes_through_to_backing_dict():
    data = {"a": 1}
    context = ExecutionContext(data)
    context["b"] = 2
    del context["a"]
    assert data == {"b": 2}
    assert len(context) == 1
    assert context.snapshot() == {"b": 2}
    assert context.snapshot() is not data


def test_render_substitutes_placeholders():
    context = ExecutionContext({"repoUrl": "https://example.com/r.git", "build": {"exitCode": 3}})
    assert (
        context.render("git clone {{repoUrl}} /tmp/repo")
        == "git clone https://example.com/r.git /tmp/repo"
    )
    assert context.render("exit={{ build.exitCode }}") == "exit=3"
    assert context.render("no placeholders") == "no placeholders"


def test_render_missing_key_raises():
    context = ExecutionContext()
    with pytest.raises(MissingContextValue):
        context.render("echo {{missing}}")
    with pytest.raises(KeyError):
        context.lookup("a.b")
