from pathlib import Path

import pytest

from vault_agent.instructions import (
    CONTINUATION_TEMPLATE,
    SYSTEM_PROMPT_TEMPLATE,
    InstructionLoader,
)

TOOLS = [
    {"action": "file_read", "description": "Read a note", "parameter_schema": {"type": "object"}},
    {"action": "thought", "description": "Plan steps", "parameter_schema": {"type": "object"}},
]


@pytest.fixture
def loader(tmp_path: Path) -> InstructionLoader:
    return InstructionLoader(personal_dir=tmp_path / "personal")


def test_system_prompt_lists_tools_in_order(loader: InstructionLoader):
    prompt = loader.build_system_prompt(TOOLS, custom_system_message="Be brief.")

    assert "1. file_read - Read a note\n2. thought - Plan steps" in prompt
    assert '"action": "tool_name"' in prompt
    assert "{tool_descriptions}" not in prompt
    assert prompt.endswith("Be brief.")


def test_system_prompt_without_tools(loader: InstructionLoader):
    assert "(no tools available)" in loader.build_system_prompt([])


def test_requested_tool_details_only_for_known_action(loader: InstructionLoader):
    known = loader.build_system_prompt(TOOLS, requested_tool="file_read")
    unknown = loader.build_system_prompt(TOOLS, requested_tool="file_move")

    assert "`file_read`" in known
    assert "Details for the tool" not in unknown


def test_personal_override_wins(tmp_path: Path):
    personal = tmp_path / "personal"
    personal.mkdir()
    (personal / CONTINUATION_TEMPLATE).write_text("Keep going.\n", encoding="utf-8")
    loader = InstructionLoader(personal_dir=personal)

    assert loader.is_overridden(CONTINUATION_TEMPLATE) is True
    assert loader.continuation_instruction() == "Keep going."
    assert loader.is_overridden(SYSTEM_PROMPT_TEMPLATE) is False


def test_render_keeps_unknown_placeholders(tmp_path: Path):
    base = tmp_path / "base"
    base.mkdir()
    (base / "greeting.md").write_text("Hi {name}, see {other}.", encoding="utf-8")
    loader = InstructionLoader(base_dir=base, personal_dir=tmp_path / "personal")

    assert loader.render("greeting.md", name="Ana") == "Hi Ana, see {other}."


def test_base_dir_from_environment(monkeypatch, tmp_path: Path):
    (tmp_path / CONTINUATION_TEMPLATE).write_text("From env.", encoding="utf-8")
    monkeypatch.setenv("VAULT_AGENT_INSTRUCTIONS_DIR", str(tmp_path))

    loader = InstructionLoader(personal_dir=tmp_path / "personal")

    assert loader.continuation_instruction() == "From env."


def test_missing_template_raises(tmp_path: Path):
    loader = InstructionLoader(base_dir=tmp_path, personal_dir=tmp_path / "personal")

    with pytest.raises(FileNotFoundError):
        loader.load("absent.md")
