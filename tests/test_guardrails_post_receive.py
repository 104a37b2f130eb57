"""
Tests for the post-receive guardrail chain and reply post-processing
"""
import pytest

from steambot.core.config import settings
from steambot.domain.guardrails import patterns as p
from steambot.domain.guardrails.post_receive import (
    ELLIPSIS,
    check_escalation,
    post_process,
    truncate_reply,
    with_footer,
)
from steambot.domain.guardrails.verdict import GuardrailVerdict, Rule, Severity


class TestModelOutputChecks:

    @pytest.mark.unit
    def test_clean_reply_untouched(self):
        verdict = check_escalation(
            "Our robotics club meets every week.", "Tell me about robotics"
        )

        assert verdict.flags == []
        assert not verdict.escalate
        assert verdict.reason is None
        assert post_process("Our robotics club meets every week.", verdict) == (
            "Our robotics club meets every week."
        )

    @pytest.mark.unit
    def test_enrollment_confirmation_rewritten(self):
        verdict = check_escalation(
            "Great news, you are now enrolled in Robotics!", "Can I sign my son up?"
        )

        assert p.ENROLLMENT_CONFIRMATION_DETECTED in verdict.flags
        assert verdict.escalate
        assert verdict.severity == Severity.CRITICAL
        # the user's own request is the recorded reason
        assert verdict.reason == p.ENROLLMENT_REQUEST

        reply = post_process("Great news, you are now enrolled in Robotics!", verdict)
        assert reply == p.render(p.ENROLLMENT_REDIRECT_MESSAGE)
        assert p.ENROLLMENT_CONFIRMATION.search(reply) is None
        assert settings.ORG_REGISTRATION_URL in reply

    @pytest.mark.unit
    @pytest.mark.parametrize("phrase", [
        "Your spot is reserved for Monday.",
        "Payment processed, thank you!",
        "You're all set for camp.",
        "Registration is complete.",
    ])
    def test_enrollment_phrases_detected(self, phrase: str):
        verdict = check_escalation(phrase, "hello")
        assert p.ENROLLMENT_CONFIRMATION_DETECTED in verdict.flags

    @pytest.mark.unit
    def test_card_echo_rewritten(self):
        verdict = check_escalation(
            "Thanks! I noted the card ending in 1111.",
            "my card is 4111111111111111",
        )

        assert p.PII_ECHO_DETECTED in verdict.flags
        assert verdict.escalate
        reply = post_process("Thanks! I noted the card ending in 1111.", verdict)
        assert "1111" not in reply
        assert "I've removed sensitive information" in reply

    @pytest.mark.unit
    def test_foreign_contact_details_get_contact_block(self):
        text = "Email us at info@steamkids.com or call 503-555-9999."
        verdict = check_escalation(text, "How do I reach you?")

        assert verdict.flags == [p.CONTACT_INFO_MISMATCH]
        assert not verdict.escalate
        reply = post_process(text, verdict)
        assert reply == f"{text}\n\n{p.render(p.CONTACT_BLOCK)}"

    @pytest.mark.unit
    def test_organization_contact_details_accepted(self):
        text = (
            "You can email getintouch@journeytosteam.com, call (503) 506-3287 "
            "or visit https://journeytosteam.com."
        )
        assert check_escalation(text, "How do I reach you?").flags == []

    @pytest.mark.unit
    def test_hallucination_tags(self):
        verdict = check_escalation(
            "We were founded in 2015 and 95% of students love it.", "Tell me about you"
        )

        assert p.HALLUCINATION_SUSPECTED in verdict.flags
        assert verdict.escalate
        assert verdict.details["hallucination_tags"] == ["founding", "statistic"]

    @pytest.mark.unit
    def test_grounded_facts_are_not_hallucinations(self):
        verdict = check_escalation(
            "We were founded in 2015 and 95% of students love it.",
            "Tell me about you",
            grounding_text="**About**: Journey to STEAM was Founded in 2015.",
        )
        assert verdict.details["hallucination_tags"] == ["statistic"]

    @pytest.mark.unit
    @pytest.mark.parametrize("text,tag", [
        ("We guarantee your child will love robotics!", "guarantee"),
        ("Every camper gets a guaranteed spot in the fall session.", "guarantee"),
        ("Use code STEAM for 20% off your first month.", "discount"),
        ("We offer a free trial class every Saturday.", "discount"),
    ])
    def test_offers_are_hallucinations(self, text: str, tag: str):
        verdict = check_escalation(text, "what time does camp start?")

        assert verdict.details["hallucination_tags"] == [tag]

    @pytest.mark.unit
    @pytest.mark.parametrize("text", [
        "I'm not able to offer discounts, and I can't guarantee a spot until you register.",
        "We don't have any discounts right now.",
        "There's no free trial, but you can watch a demo video on our site.",
        "There is no guaranteed spot until you register.",
        "Sorry, we don't have a coupon code to share.",
    ])
    def test_refusals_are_not_hallucinations(self, text: str):
        verdict = check_escalation(text, "what time does camp start?")

        assert p.HALLUCINATION_SUSPECTED not in verdict.flags
        assert not verdict.escalate

    @pytest.mark.unit
    def test_competitor_in_response_flagged_only(self):
        verdict = check_escalation("Code Ninjas also offers classes.", "hello")

        assert verdict.flags == [p.COMPETITOR_IN_RESPONSE]
        assert not verdict.escalate

    @pytest.mark.unit
    def test_hostile_tone_rewritten(self):
        verdict = check_escalation("That's a stupid question.", "What ages do you serve?")

        assert p.HOSTILE_TONE in verdict.flags
        assert post_process("That's a stupid question.", verdict) == p.render(p.APOLOGETIC_MESSAGE)

    @pytest.mark.unit
    @pytest.mark.parametrize("text", [
        "What a silly question, it's on the website.",
        "You're being ridiculous about the schedule.",
        "You need to calm down. Camp starts at 9.",
        "Honestly? I don't care.",
        "Please stop asking me the same thing.",
        "As I already told you, the class is full.",
    ])
    def test_hostile_phrasings(self, text: str):
        assert p.HOSTILE_TONE in check_escalation(text, "hello").flags

    @pytest.mark.unit
    @pytest.mark.parametrize("text", [
        "There are no stupid questions! Our robotics camp runs for one week in July.",
        "There's no such thing as a dumb question, so ask away.",
        "Deep breathing helps kids calm down before a big presentation.",
        "Our instructors really care about every student.",
        "I don't care for long lectures either, so our classes are hands-on.",
        "Don't stop asking us questions, curiosity is what STEAM is about!",
        "You're not being a bother at all.",
    ])
    def test_friendly_replies_keep_their_text(self, text: str):
        verdict = check_escalation(text, "What ages do you serve?")

        assert p.HOSTILE_TONE not in verdict.flags
        assert post_process(text, verdict) == text

    @pytest.mark.unit
    def test_first_rewrite_wins(self):
        verdict = check_escalation("Calm down, you are now enrolled.", "hello")

        assert verdict.rewrite_text == p.render(p.ENROLLMENT_REDIRECT_MESSAGE)
        assert p.HOSTILE_TONE in verdict.flags

    @pytest.mark.unit
    def test_model_handoff_escalates_without_extra_invitation(self):
        text = "I'd love to connect you with our team for that!"
        verdict = check_escalation(text, "What time is it?")

        assert verdict.reason == p.AI_SUGGESTED_HANDOFF
        assert verdict.escalate
        assert post_process(text, verdict) == text


class TestUserTriggers:

    @pytest.mark.unit
    @pytest.mark.parametrize("user_text,reason", [
        ("My son got hurt at camp yesterday", p.SAFETY_INCIDENT),
        ("I need to cancel our registration", p.CANCELLATION_REQUEST),
        ("I'm really disappointed with the class", p.COMPLAINT),
        ("Do you have accommodations for kids with autism?", p.SPECIAL_NEEDS_INQUIRY),
        ("I want to enroll my daughter", p.ENROLLMENT_REQUEST),
        ("Can I talk to a real person?", p.HUMAN_HANDOFF_REQUEST),
        ("We need to reschedule next week", p.SCHEDULING_CONFLICT),
        ("Our school district wants to partner with you", p.PARTNERSHIP_INQUIRY),
        ("I'm a reporter writing a story", p.MEDIA_INQUIRY),
    ])
    def test_trigger_reason(self, user_text: str, reason: str):
        verdict = check_escalation("Thanks for reaching out!", user_text)

        assert verdict.escalate
        assert verdict.reason == reason

    @pytest.mark.unit
    def test_earlier_trigger_wins_and_all_are_flagged(self):
        verdict = check_escalation("Thanks for reaching out!", "My son was bullied and I want a refund")

        assert verdict.reason == p.SAFETY_INCIDENT
        assert p.COMPLAINT in verdict.flags
        assert verdict.severity == Severity.CRITICAL

    @pytest.mark.unit
    def test_user_trigger_preferred_over_model_reason(self):
        verdict = check_escalation("We guarantee results!", "I want to enroll")

        assert p.HALLUCINATION_SUSPECTED in verdict.flags
        assert verdict.reason == p.ENROLLMENT_REQUEST

    @pytest.mark.unit
    def test_escalation_appends_invitation(self):
        verdict = check_escalation("Robotics is great for kids.", "I want to enroll")
        reply = post_process("Robotics is great for kids.", verdict)

        assert reply == "Robotics is great for kids.\n\n" + p.render(p.ESCALATION_INVITATION)

    @pytest.mark.unit
    def test_classifier_error_is_skipped(self):
        def boom(data):
            raise RuntimeError("broken rule")

        verdict = check_escalation("hello", "hello", rules=(Rule("boom", boom),))
        assert verdict.flags == []


class TestPostProcess:

    @pytest.mark.unit
    def test_medical_disclaimer_appended(self):
        reply = post_process(
            "Kids with allergies are welcome.", GuardrailVerdict(), needs_medical_disclaimer=True
        )
        assert reply == "Kids with allergies are welcome.\n\n" + p.MEDICAL_DISCLAIMER

    @pytest.mark.unit
    def test_medical_disclaimer_not_duplicated(self):
        text = "Please check with your pediatrician first."
        assert post_process(text, GuardrailVerdict(), needs_medical_disclaimer=True) == text

    @pytest.mark.unit
    def test_long_reply_truncated_before_suffix(self):
        text = "Robotics is fun. " * 300
        reply = post_process(text, GuardrailVerdict(escalate=True))

        assert len(reply) <= settings.MAX_RESPONSE_CHARS
        assert reply.endswith(p.render(p.ESCALATION_INVITATION))

    @pytest.mark.unit
    def test_footer_comes_last_within_limit(self):
        text = "Robotics is fun. " * 300
        reply = post_process(text, GuardrailVerdict(escalate=True), footer="Reply STOP to unsubscribe.")

        assert len(reply) <= settings.MAX_RESPONSE_CHARS
        assert reply.endswith(p.render(p.ESCALATION_INVITATION) + "\n\nReply STOP to unsubscribe.")

    @pytest.mark.unit
    def test_with_footer(self):
        assert with_footer("Hello!", None) == "Hello!"
        assert with_footer("Hello!", "Bye.") == "Hello!\n\nBye."

        reply = with_footer("Robotics is fun. " * 300, "Bye.")
        assert len(reply) <= settings.MAX_RESPONSE_CHARS
        assert reply.endswith(".\n\nBye.")

    @pytest.mark.unit
    def test_truncate_at_sentence_boundary(self):
        text = "This is sentence number one. " * 20
        result = truncate_reply(text, 300)

        assert len(result) <= 300
        assert result.endswith(".")

    @pytest.mark.unit
    def test_truncate_at_word_boundary_with_ellipsis(self):
        text = "word " * 200
        result = truncate_reply(text, 300)

        assert len(result) <= 300
        assert result.endswith(ELLIPSIS)
        assert result[:-1].endswith("word")

    @pytest.mark.unit
    def test_short_reply_not_truncated(self):
        assert truncate_reply("Short.", 300) == "Short."
