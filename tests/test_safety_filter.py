import pytest

from domain.errors import SafetyViolation
from domain.models.coach_spec import default_coach_spec
from domain.models.turn import CoachOutput, ToolRequest
from domain.safety.safety_filter import REDACTION_MARK, SafetyFilter


@pytest.fixture
def safety():
    return SafetyFilter()


@pytest.fixture
def spec():
    return default_coach_spec()


def output(text, *requests):
    return CoachOutput(message_text=text, tool_requests=list(requests))


def request(tool, requires_confirmation=True):
    return ToolRequest(request_id="tr_1", tool=tool, requires_confirmation=requires_confirmation, reason="")


def violation_kind(safety, coach_output, spec):
    with pytest.raises(SafetyViolation) as exc_info:
        safety.validate(coach_output, spec)
    return exc_info.value.kind


def test_clean_output_passes(safety, spec):
    safety.validate(output("Pick one task and start a 10 minute timer."), spec)


def test_medical_refusal_follows_policy_flag(safety, spec):
    text = "I can diagnose that for you."

    assert violation_kind(safety, output(text), spec) == "refusal.medical"

    spec.policies.refusals.medical = False
    safety.validate(output(text), spec)


def test_keywords_match_at_word_start_only(safety, spec):
    # "sue" must not hit "issue"; "court" must not hit "discourteous"
    safety.validate(output("That issue was discourteous of them."), spec)

    assert violation_kind(safety, output("You could sue them."), spec) == "refusal.legal"


def test_financial_screen_only_applies_when_advice_is_none(safety, spec):
    text = "Review your portfolio once a quarter."

    safety.validate(output(text), spec)

    spec.policies.refusals.financial_advice = "none"
    assert violation_kind(safety, output(text), spec) == "refusal.financial"


def test_self_harm_language_escalates(safety, spec):
    with pytest.raises(SafetyViolation) as exc_info:
        safety.validate(output("Sometimes people want to die when overwhelmed."), spec)

    assert exc_info.value.kind == "refusal.self_harm"
    assert "crisis helpline" in exc_info.value.message


def test_redact_pattern_blocks_output_unless_sensitive_memory_allowed(safety, spec):
    text = "Never share your credit_card details."

    assert violation_kind(safety, output(text), spec) == "privacy"

    spec.policies.privacy.store_sensitive_memory = True
    safety.validate(output(text), spec)


def test_confirmation_tool_must_request_confirmation(safety, spec):
    coach_output = output("Adding it now.", request("calendar_event_create", requires_confirmation=False))

    assert violation_kind(safety, coach_output, spec) == "tool_consent"


def test_disallowed_tool_is_rejected(safety, spec):
    coach_output = output("Sending the email.", request("email_send", requires_confirmation=False))

    with pytest.raises(SafetyViolation) as exc_info:
        safety.validate(coach_output, spec)

    assert exc_info.value.message == "Tool email_send is not allowed by this coach"


def test_allowed_confirmed_tool_passes(safety, spec):
    safety.validate(output("Want a reminder?", request("reminder_create")), spec)


def test_sensitive_data_is_always_rejected(safety, spec):
    spec.policies.privacy.store_sensitive_memory = True
    spec.policies.refusals.medical = False

    assert violation_kind(safety, output("Your SSN 123-45-6789 is on file."), spec) == "sensitive_data"


def test_manipulative_language_with_curly_apostrophe(safety, spec):
    assert violation_kind(safety, output("Honestly, you’re being lazy."), spec) == "manipulation"


def test_shaming_screen_follows_flag(safety, spec):
    text = "That's pathetic."

    assert violation_kind(safety, output(text), spec) == "shaming"

    spec.policies.safety.no_shaming = False
    safety.validate(output(text), spec)


def test_first_failing_screen_wins(safety, spec):
    coach_output = output("I can diagnose this, and you're weak for asking.")

    assert violation_kind(safety, coach_output, spec) == "refusal.medical"


def test_redact_sensitive_data(safety):
    text = "password: hunter2 and card 4111 1111 1111 1111"

    redacted = safety.redact_sensitive_data(text)

    assert "hunter2" not in redacted
    assert "4111" not in redacted
    assert redacted.count(REDACTION_MARK) == 2


def test_validate_memory_write(safety):
    safety.validate_memory_write("Walk after lunch every day")

    with pytest.raises(SafetyViolation):
        safety.validate_memory_write("my api_key: sk-123")
