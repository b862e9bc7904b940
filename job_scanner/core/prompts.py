from __future__ import annotations

from job_scanner.core.models import EmailItem


CONFIRMATION_PHRASES = [
    "thank you for applying",
    "thanks for applying",
    "application received",
    "thank you for your application",
    "application submitted",
    "submission received",
    "we received your application",
    "we have received your application",
    "application has been received",
    "your application for the",
    "application submitted successfully",
]

ATS_DOMAINS = [
    "greenhouse-mail.io",
    "greenhouse.io",
    "lever.co",
    "ashbyhq.com",
    "myworkday.com",
    "gem.com",
    "workable.com",
    "taleo.net",
    "icims.com",
    "smartrecruiters.com",
    "appreview.gem.com",
]

# Phrases that settle the answer as "no" even when confirmation language is present.
STRONG_REJECTION_PHRASES = [
    "not moving forward",
    "will not be moving forward",
    "position has been filled",
    "decided not to",
    "not been selected",
    "have not been selected",
    "you have not been selected",
    "decided to move forward with other candidates",
    "pursue other candidates",
]

REJECTION_PHRASES = STRONG_REJECTION_PHRASES + [
    "unfortunately",
    "have reviewed your resume",
    "carefully considered your qualifications",
]

CLASSIFY_BODY_CHARS = 1000

CLASSIFICATION_PROMPT = """
Analyze this email to determine if it is a job application confirmation/acknowledgment.

STRONG INDICATORS (if ANY are present, likely YES):
Subject or body contains: {confirmation_phrases}
From domains: {ats_domains}

CONFIRMATION EMAIL TYPES TO DETECT:
1. Immediate auto-reply after application submission
2. Acknowledgment from a company recruiting/HR team
3. Applicant tracking system confirmation emails
4. Application status notifications (received/under review)

CRITICAL EXCLUSIONS (answer NO):
- Rejection emails containing: {rejection_phrases}
- Emails that say "thank you for your interest" but also mention rejection or moving forward with other candidates
- Interview invitations or scheduling
- Job alerts/recommendations from job boards
- Marketing emails from recruiting platforms
- Cold recruiter outreach that does not respond to an application
- Company newsletters
- Follow-ups after a rejection

EMAIL TO ANALYZE:
Subject: {subject}
From: {sender}
Body: {body}

RULES:
1. If the email contains BOTH confirmation and rejection language, answer NO. Rejection wins.
2. Only answer YES if the email confirms receipt/submission of an application without rejecting it.

Answer (YES or NO):
""".strip()

EXTRACTION_PROMPT = """
Extract the company name and job position from this job application confirmation email.

EMAIL:
Subject: {subject}
From: {sender}
Body: {body}

EXTRACT:
1. COMPANY NAME:
   - Subject lines like "Thank you for applying to [Company]"
   - Company names in the body or signature
   - Sender domain: @databricks.com -> "Databricks", GDIT@myworkday.com -> "GDIT"
   - For applicant tracking systems (greenhouse, ashby, workday, gem), find the actual company in the text
2. JOB POSITION:
   - "for the [position] role", "your application for [position]"
   - Use null if no position is stated

IMPORTANT:
- Extract at least the company name
- Position can be null
- Do NOT include any date

OUTPUT (JSON only, no extra text):
{{
  "company": "Company Name or null",
  "position": "Job Title or null"
}}
""".strip()

CONNECTION_TEST_PROMPT = 'Respond with only the word "OK"'


def _quoted(phrases: list[str]) -> str:
    return ", ".join(f'"{phrase}"' for phrase in phrases)


def build_classification_prompt(item: EmailItem) -> str:
    return CLASSIFICATION_PROMPT.format(
        confirmation_phrases=_quoted(CONFIRMATION_PHRASES),
        ats_domains=", ".join(ATS_DOMAINS),
        rejection_phrases=_quoted(REJECTION_PHRASES),
        subject=item.subject,
        sender=item.sender,
        body=item.body[:CLASSIFY_BODY_CHARS],
    )


def build_extraction_prompt(item: EmailItem) -> str:
    return EXTRACTION_PROMPT.format(subject=item.subject, sender=item.sender, body=item.body)


def searchable_text(item: EmailItem) -> str:
    return f"{item.subject}\n{item.body}".lower()


def has_strong_rejection(item: EmailItem) -> bool:
    text = searchable_text(item)
    return any(phrase in text for phrase in STRONG_REJECTION_PHRASES)
