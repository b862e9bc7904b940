import pytest

from conftest import make_item
from job_scanner.adapters.ai_rules import RuleBasedAI
from job_scanner.core.errors import ExtractionIncomplete


@pytest.fixture
def ai():
    return RuleBasedAI()


def test_confirmation_phrase_matches(ai):
    item = make_item(1, subject="Application received", body="Thanks, we will be in touch.")
    assert ai.classify(item) is True


def test_rejection_overrides_confirmation(ai):
    item = make_item(
        1,
        subject="Thank you for applying",
        body="After review we have decided to move forward with other candidates.",
    )
    assert ai.classify(item) is False


def test_newsletter_is_not_a_match(ai):
    item = make_item(1, subject="This week in engineering", body="Our top stories.", sender="news@blog.example.com")
    assert ai.classify(item) is False


def test_ats_sender_with_application_mention(ai):
    item = make_item(
        1,
        subject="Update from Figma",
        body="We are reviewing your application now.",
        sender="no-reply@jobs.lever.co",
    )
    assert ai.classify(item) is True


def test_extracts_company_and_position(ai):
    item = make_item(
        1,
        subject="Thank you for applying to Stripe!",
        body="We received your application for the Backend Engineer position.",
        sender="careers@stripe.com",
    )
    result = ai.extract(item)
    assert result.company == "Stripe"
    assert result.position == "Backend Engineer"


def test_company_falls_back_to_sender_domain(ai):
    item = make_item(1, subject="Application received", body="Thanks for your interest.", sender="jobs@databricks.com")
    result = ai.extract(item)
    assert result.company == "Databricks"
    assert result.position is None


def test_ats_domain_is_not_used_as_company(ai):
    item = make_item(
        1,
        subject="Your application to Figma",
        body="We got it.",
        sender="no-reply@us.greenhouse-mail.io",
    )
    assert ai.extract(item).company == "Figma"


def test_nothing_to_extract(ai):
    item = make_item(1, subject="Application update", body="We got it.", sender="no-reply@greenhouse.io")
    with pytest.raises(ExtractionIncomplete):
        ai.extract(item)
