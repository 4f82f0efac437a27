import asyncio

import pytest
from click.testing import CliRunner

from tubevault.core.prompt import WHAT_TO_DO_QUESTION, Prompter, TerminalPrompter, _parse_indices
from tubevault.models import WhatToDo


class RecordingPrompter(Prompter):
    def __init__(self, answer: int = 0):
        self.answer = answer
        self.seen = []

    async def select(self, prompt, items, default=0):
        self.seen.append((prompt, list(items)))
        return self.answer

    async def multi_select(self, prompt, items, defaults):
        return []

    async def confirm(self, prompt, default=True):
        return default

    async def text(self, prompt):
        return ""

    async def pause(self, prompt="Press Enter to continue..."):
        return None


def _typed(text, call):
    with CliRunner().isolation(input=text):
        return call()


def test_partial_prompter_cannot_be_built():
    class SelectOnly(Prompter):
        async def select(self, prompt, items, default=0):
            return 0

    with pytest.raises(TypeError):
        SelectOnly()


def test_empty_allowed_set_is_a_programming_error():
    with pytest.raises(ValueError):
        asyncio.run(RecordingPrompter().ask_what_to_do("fpcalc failed", []))


def test_choices_are_shown_in_declaration_order():
    prompter = RecordingPrompter(answer=1)
    decision = asyncio.run(
        prompter.ask_what_to_do("beet failed", [WhatToDo.ABORT_REQUEST, WhatToDo.CONTINUE, WhatToDo.RETRY])
    )

    title, items = prompter.seen[0]
    assert items == ["Retry", "Continue...", "Abort the video request"]
    assert decision is WhatToDo.CONTINUE
    assert title.startswith("beet failed")
    assert WHAT_TO_DO_QUESTION in title


def test_single_choice_is_still_asked():
    prompter = RecordingPrompter(answer=0)
    assert asyncio.run(prompter.ask_what_to_do("", [WhatToDo.ABORT_REQUEST])) is WhatToDo.ABORT_REQUEST
    assert prompter.seen[0][0] == WHAT_TO_DO_QUESTION


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", []),
        ("1", [0]),
        ("3,1", [0, 2]),
        ("2 2, 3", [1, 2]),
        ("0", None),
        ("4", None),
        ("x", None),
    ],
)
def test_parse_indices(raw, expected):
    assert _parse_indices(raw, 3) == expected


def test_select_reasks_until_in_range():
    picked = _typed("5\n0\n2\n", lambda: TerminalPrompter()._select("Pick one", ["a", "b", "c"], 0))
    assert picked == 1


def test_select_enter_takes_the_default():
    assert _typed("\n", lambda: TerminalPrompter()._select("Pick one", ["a", "b", "c"], 2)) == 2


def test_multi_select_enter_keeps_preselected_files():
    picked = _typed(
        "\n",
        lambda: TerminalPrompter()._multi_select("Select files", ["<none>", "a.opus", "b.opus"], [False, True, True]),
    )
    assert picked == [1, 2]


def test_multi_select_none_item():
    picked = _typed(
        "1\n",
        lambda: TerminalPrompter()._multi_select("Select files", ["<none>", "a.opus", "b.opus"], [False, True, True]),
    )
    assert picked == [0]


def test_multi_select_enter_without_defaults_selects_nothing():
    picked = _typed(
        "\n",
        lambda: TerminalPrompter()._multi_select("Select files", ["<none>", "a.opus"], [False, False]),
    )
    assert picked == []


def test_multi_select_reasks_on_bad_numbers():
    picked = _typed(
        "9\n2,3\n",
        lambda: TerminalPrompter()._multi_select("Select files", ["<none>", "a.opus", "b.opus"], [False, True, True]),
    )
    assert picked == [1, 2]


def test_text_reasks_on_blank_value():
    assert _typed("   \n  key \n", lambda: TerminalPrompter()._text("AcoustID user key")) == "key"


def test_terminal_prompts_run_off_the_event_loop():
    decision = _typed(
        "4\n",
        lambda: asyncio.run(TerminalPrompter().ask_what_to_do("yt-dlp failed", WhatToDo.all())),
    )
    assert decision is WhatToDo.ABORT_REQUEST
