"""
Tests for utils.console module - dual-mode CLI output utilities.

- OutputMode manages format/quiet state and the JSON buffer
- success/error/warning/info adapt to human, agent and quiet modes
- Table and summary helpers buffer JSON in agent mode
- No ANSI codes in agent/quiet output
"""

import json

import pytest

from llm_rank_watcher.utils.console import (
    NoOpProgress,
    OutputMode,
    create_progress_bar,
    error,
    info,
    output_mode,
    print_banner,
    print_outcomes_table,
    print_report_summary,
    print_run_summary,
    spinner,
    success,
    warning,
)

ROWS = [
    {
        "outcome_id": 1,
        "prompt_id": "p1",
        "category_id": "crm",
        "ranking": ["Acme", "Globex"],
        "brand_position": 1,
        "score": 1.0,
        "flags": [],
    },
    {
        "outcome_id": 2,
        "prompt_id": "p2",
        "category_id": None,
        "ranking": [],
        "brand_position": None,
        "score": 0.0,
        "flags": ["no_ranking"],
    },
]

REPORT = {
    "run_id": "run-1",
    "brand_name": "Acme",
    "composite": 56.67,
    "intent_weighted_score": 40.0,
    "has_intent_weights": True,
    "by_category": {"crm": 85.0},
    "format_confidence": 67,
    "mention_rate": 67,
    "top3_rate": 67,
    "top1_rate": 33,
    "override_count": 0,
}


@pytest.fixture(autouse=True)
def reset_output_mode():
    """Reset global output_mode to default state around each test."""
    output_mode.reset()
    yield
    output_mode.reset()


class TestOutputMode:
    def test_defaults(self):
        mode = OutputMode()
        assert mode.is_human()
        assert not mode.is_agent()
        assert mode.quiet is False

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid format"):
            OutputMode("xml")

    def test_flush_json_writes_and_clears(self, capsys):
        mode = OutputMode("json")
        mode.add_json("status", "success")

        mode.flush_json()
        mode.flush_json()

        out = capsys.readouterr().out
        assert json.loads(out) == {"status": "success"}

    def test_flush_json_noop_in_text_mode(self, capsys):
        mode = OutputMode("text")
        mode.add_json("status", "success")

        mode.flush_json()

        assert capsys.readouterr().out == ""

    def test_reset(self):
        output_mode.format = "json"
        output_mode.quiet = True
        output_mode.add_json("k", "v")

        output_mode.reset()

        assert output_mode.is_human()
        assert output_mode.quiet is False
        assert output_mode._json_buffer == {}


class TestMessages:
    def test_success_human(self, capsys):
        success("Config loaded")
        assert "Config loaded" in capsys.readouterr().out

    def test_success_agent_buffers(self, capsys):
        output_mode.format = "json"

        success("Config loaded")

        assert capsys.readouterr().out == ""
        assert output_mode._json_buffer == {"status": "success", "message": "Config loaded"}

    def test_error_human_goes_to_stderr(self, capsys):
        error("Something broke")

        captured = capsys.readouterr()
        assert "Something broke" in captured.err
        assert captured.out == ""

    def test_error_quiet_still_shown(self, capsys):
        output_mode.quiet = True
        error("Something broke")
        assert "Something broke" in capsys.readouterr().err

    def test_error_agent_buffers(self):
        output_mode.format = "json"
        error("Something broke")
        assert output_mode._json_buffer == {"status": "error", "error": "Something broke"}

    def test_warning_agent_buffers(self):
        output_mode.format = "json"
        warning("Careful")
        assert output_mode._json_buffer == {"warning": "Careful"}

    @pytest.mark.parametrize("format_type, quiet", [("json", False), ("text", True)])
    def test_info_silent_outside_human_mode(self, capsys, format_type, quiet):
        output_mode.format = format_type
        output_mode.quiet = quiet

        info("hello")
        print_banner("0.1.0")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert output_mode._json_buffer == {}


class TestProgress:
    def test_noop_outside_human_mode(self):
        output_mode.format = "json"

        progress = create_progress_bar()

        assert isinstance(progress, NoOpProgress)
        with progress:
            task = progress.add_task("Running prompts", total=3)
            progress.update(task, completed=1)

    def test_spinner_yields_none_in_agent_mode(self):
        output_mode.format = "json"
        with spinner("Loading...") as status:
            assert status is None


class TestOutcomesTable:
    def test_human(self, capsys):
        print_outcomes_table(ROWS)

        out = capsys.readouterr().out
        assert "Prompt Outcomes" in out
        assert "Acme, Globex" in out
        assert "#1" in out

    def test_agent_buffers_rows(self):
        output_mode.format = "json"
        print_outcomes_table(ROWS)
        assert output_mode._json_buffer["outcomes"] == ROWS

    def test_quiet_prints_nothing(self, capsys):
        output_mode.quiet = True
        print_outcomes_table(ROWS)
        assert capsys.readouterr().out == ""


class TestRunSummary:
    def test_agent_flushes(self, capsys):
        output_mode.format = "json"
        success("done")

        print_run_summary("run-1", "completed", 56.67, 3, 3, 300)

        data = json.loads(capsys.readouterr().out)
        assert data == {
            "status": "success",
            "message": "done",
            "run_id": "run-1",
            "run_status": "completed",
            "composite": 56.67,
            "completed_prompts": 3,
            "total_prompts": 3,
            "tokens_used": 300,
        }

    def test_quiet_tab_separated(self, capsys):
        output_mode.quiet = True

        print_run_summary("run-1", "failed", 12.5, 1, 3, 100)

        assert capsys.readouterr().out == "run-1\tfailed\t12.50\t1\t3\n"

    def test_human_failed_panel(self, capsys):
        print_run_summary("run-1", "failed", 12.5, 1, 3, 100)

        out = capsys.readouterr().out
        assert "Run Failed" in out
        assert "12.50" in out


class TestReportSummary:
    def test_human(self, capsys):
        print_report_summary(REPORT)

        out = capsys.readouterr().out
        assert "56.67" in out
        assert "Intent weighted" in out
        assert "Top 1 rate" in out

    def test_quiet(self, capsys):
        output_mode.quiet = True

        print_report_summary(REPORT)

        assert capsys.readouterr().out == "run-1\t56.67\t67\t33\t67\n"

    def test_agent_buffers_report(self):
        output_mode.format = "json"
        print_report_summary(REPORT)
        assert output_mode._json_buffer == {"report": REPORT}
