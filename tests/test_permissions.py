import json

import pytest

from pyagx.config.loader import load_local_config, local_config_path
from pyagx.tools.base import ToolContext, ToolError
from pyagx.tools.builtin_tools.create_file import CreateFile
from pyagx.tools.builtin_tools.edit_file import EditFile
from pyagx.tools.builtin_tools.read_dir import ReadDir
from pyagx.tools.builtin_tools.read_file import ReadFile
from pyagx.tools.builtin_tools.run_cmd import RunCommand
from pyagx.tools.command_pattern import ApprovedCommands, CommandPattern
from pyagx.tools.permissions import Decision, PermissionGate, PermissionRecord, PermissionStore


class ScriptedPrompter:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    async def __call__(self, text):
        self.prompts.append(text)
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer


@pytest.fixture
def ctx(tmp_path):
    return ToolContext(cwd=str(tmp_path))


def _gate(tmp_path, *answers, record=None):
    store = PermissionStore(record or PermissionRecord(), cwd=tmp_path)
    prompter = ScriptedPrompter(*answers)
    return PermissionGate(store, prompter=prompter), store, prompter


@pytest.mark.asyncio
async def test_reads_bypass_the_gate(tmp_path, ctx):
    gate, _, prompter = _gate(tmp_path)
    assert (await gate.confirm(ReadFile(path="a"), ctx)).decision is Decision.APPROVED
    assert (await gate.confirm(ReadDir(path="."), ctx)).decision is Decision.APPROVED
    assert prompter.prompts == []


@pytest.mark.asyncio
@pytest.mark.parametrize("answer,decision", [
    ("", Decision.APPROVED),
    ("y", Decision.APPROVED),
    ("n", Decision.REJECTED),
    ("no", Decision.REJECTED),
    ("please use a different name", Decision.FEEDBACK),
])
async def test_answers(tmp_path, ctx, answer, decision):
    gate, _, _ = _gate(tmp_path, answer)
    result = await gate.confirm(CreateFile(path="x.txt", contents="x"), ctx)
    assert result.decision is decision
    if decision is Decision.FEEDBACK:
        assert result.feedback == answer


@pytest.mark.asyncio
async def test_eof_at_prompt_rejects(tmp_path, ctx):
    gate, _, _ = _gate(tmp_path, EOFError())
    assert (await gate.confirm(RunCommand(command="ls"), ctx)).decision is Decision.REJECTED


@pytest.mark.asyncio
async def test_always_allow_file_changes_is_session_scoped(tmp_path, ctx):
    (tmp_path / "f.txt").write_text("a", encoding="utf-8")
    gate, store, prompter = _gate(tmp_path, "a")

    first = await gate.confirm(CreateFile(path="x.txt", contents="x"), ctx)
    assert first.decision is Decision.AUTO_APPROVED
    assert store.record.fs_changes

    second = await gate.confirm(EditFile(path="f.txt", old_str="a", new_str="b"), ctx)
    assert second.decision is Decision.AUTO_APPROVED
    assert len(prompter.prompts) == 1
    assert not local_config_path(tmp_path).exists()


@pytest.mark.asyncio
async def test_always_allow_command_persists_pattern(tmp_path, ctx):
    gate, store, prompter = _gate(tmp_path, "a")

    result = await gate.confirm(RunCommand(command="git status --short"), ctx)
    assert result.decision is Decision.AUTO_APPROVED
    assert CommandPattern("git", "status") in store.record.approved_commands

    saved = json.loads(local_config_path(tmp_path).read_text(encoding="utf-8"))
    assert saved == {"approved_commands": [{"binary": "git", "first_arg": "status"}]}
    assert load_local_config(tmp_path).approved_commands == store.record.approved_commands

    again = await gate.confirm(RunCommand(command="git status"), ctx)
    assert again.decision is Decision.AUTO_APPROVED
    assert len(prompter.prompts) == 1


@pytest.mark.asyncio
async def test_first_arg_pattern_does_not_cover_other_subcommands(tmp_path, ctx):
    record = PermissionRecord(approved_commands=ApprovedCommands([CommandPattern("git", "commit")]))
    gate, _, prompter = _gate(tmp_path, "n", record=record)

    assert (await gate.confirm(RunCommand(command="git commit -m x"), ctx)).decision is Decision.AUTO_APPROVED
    assert (await gate.confirm(RunCommand(command="git push"), ctx)).decision is Decision.REJECTED
    assert len(prompter.prompts) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("command", [
    "ls && touch pwned",
    "ls; rm -r src",
    "ls || cat notes.txt",
    "ls | sh",
    "ls & sleep 1",
    "ls > out.txt",
    "ls < in.txt",
    "ls `whoami`",
    "ls $(whoami)",
    "ls\ntouch pwned",
])
async def test_chained_commands_are_never_auto_approved(tmp_path, ctx, command):
    record = PermissionRecord(approved_commands=ApprovedCommands([CommandPattern("ls")]))
    gate, _, prompter = _gate(tmp_path, "n", record=record)

    assert not record.is_approved(RunCommand(command=command))
    assert (await gate.confirm(RunCommand(command=command), ctx)).decision is Decision.REJECTED
    assert len(prompter.prompts) == 1


def test_plain_command_still_matches_its_pattern():
    record = PermissionRecord(approved_commands=ApprovedCommands([CommandPattern("ls")]))
    assert record.is_approved(RunCommand(command="ls -la src"))


@pytest.mark.asyncio
async def test_edit_preview_failure_surfaces_as_tool_error(tmp_path, ctx):
    (tmp_path / "f.txt").write_text("abc", encoding="utf-8")
    gate, _, prompter = _gate(tmp_path)
    with pytest.raises(ToolError):
        await gate.confirm(EditFile(path="f.txt", old_str="zzz", new_str="y"), ctx)
    assert prompter.prompts == []


def test_record_display():
    record = PermissionRecord(
        fs_changes=True,
        approved_commands=ApprovedCommands([CommandPattern("ls")]),
    )
    assert str(record) == (
        "approvals:\n"
        "- create/edit files: true\n"
        "- approved commands: \n  - ls .*\n"
    )
