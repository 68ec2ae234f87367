import json

from voice_actions.services.summary_postprocess import (
    boilerplate_patterns,
    collapse_blank_lines,
    number_prose,
    postprocess_summary,
    register_boilerplate,
)


class TestBoilerplate:
    """Preambles and closings are stripped per language."""

    def test_english_preamble_and_closing(self):
        text = "Here's a summary of your note: Call mom at 5pm. Let me know if you need anything else."
        assert postprocess_summary(text, "en") == "Call mom at 5pm."

    def test_french_preamble_and_closing(self):
        text = "Voici le résumé de votre note : Appeler maman à 17h. N'hésitez pas à me demander."
        assert postprocess_summary(text, "fr-FR") == "Appeler maman à 17h."

    def test_language_independent_markers(self):
        assert postprocess_summary("✅ Done: Buy milk", "en") == "Buy milk"

    def test_registry_is_keyed_by_language_and_role(self):
        register_boilerplate("it", "closing", r"fammi sapere")
        assert boilerplate_patterns("it", "closing")
        assert postprocess_summary("Comprare il latte. Fammi sapere se serve altro.", "it") == "Comprare il latte."

    def test_clean_summary_is_untouched(self):
        assert postprocess_summary("Call the dentist on Friday.", "en") == "Call the dentist on Friday."


class TestFormatting:
    def test_json_summary_is_rendered_as_sections(self):
        text = '{"tasks": [{"title": "Buy milk"}, {"title": "Call plumber"}], "summary": "Errands"}'
        assert postprocess_summary(text, "en") == "Tasks:\n1. Buy milk\n2. Call plumber\n\nSummary: Errands"

    def test_fenced_json_uses_localized_labels(self):
        text = '```json\n{"reminders": [{"title": "Appeler maman"}]}\n```'
        assert postprocess_summary(text, "fr") == "Rappels:\n1. Appeler maman"

    def test_run_on_prose_is_numbered(self):
        text = "Buy milk. Call the plumber. Book flights. Email Sam."
        assert number_prose(text) == "1. Buy milk.\n2. Call the plumber.\n3. Book flights.\n4. Email Sam."

    def test_short_prose_is_left_alone(self):
        text = "Buy milk. Call the plumber. Book flights."
        assert number_prose(text) == text

    def test_closing_inside_json_summary_keeps_the_payload_intact(self):
        text = '{"tasks": [{"title": "Call mom"}], "summary": "One task. Let me know if you need more."}'
        assert postprocess_summary(text, "en") == "Tasks:\n1. Call mom\n\nSummary: One task."

    def test_closing_inside_indented_json_is_stripped_in_one_pass(self):
        text = json.dumps(
            {"tasks": [{"title": "Call mom"}], "summary": "One task. Let me know if you need more."}, indent=2
        )
        assert postprocess_summary(text, "en") == "Tasks:\n1. Call mom\n\nSummary: One task."

    def test_preamble_before_json_is_ignored(self):
        text = 'Here is the summary: {"reminders": [{"title": "Water plants"}]}'
        assert postprocess_summary(text, "en") == "Reminders:\n1. Water plants"

    def test_blank_lines_are_collapsed(self):
        assert collapse_blank_lines("Tasks:\n\n\n\n1. Buy milk  \n") == "Tasks:\n\n1. Buy milk"

    def test_empty_input(self):
        assert postprocess_summary(None) == ""
        assert postprocess_summary("") == ""


def test_postprocess_is_idempotent():
    samples = [
        "Here's a summary of your note: Call mom at 5pm. Let me know if you need anything else.",
        "Buy milk. Call the plumber. Book flights. Email Sam.",
        '{"tasks": [{"title": "Buy milk"}], "healthNotes": [{"content": "Headache"}], "summary": "Errands"}',
        "Tasks:\n1. Buy milk\n\n\n\nNotes:\n1. Nice weather",
        '{"tasks": [{"title": "Call mom"}], "summary": "One task. Let me know if you need more."}',
        json.dumps({"tasks": [{"title": "Call mom"}], "summary": "One task. Let me know if you need more."}, indent=2),
    ]
    for sample in samples:
        once = postprocess_summary(sample, "en")
        assert postprocess_summary(once, "en") == once
