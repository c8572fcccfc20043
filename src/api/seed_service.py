"""
seed_service.py: built-in data seeded on first startup.

`SQLiteService.ensure_default_evaluator_rules()` and
`SQLiteService.ensure_default_wizard_steps()` insert these with
insert-or-ignore semantics, so user edits and deletions of other rows are
never overwritten.
"""

DEFAULT_EVALUATOR_RULES = [
    {
        "name": "Escalation on Refund Keywords",
        "description": "Check if agent escalated when refund/cancel/money back keywords present",
        "check_prompt": (
            'Does the customer email contain keywords like "refund", "cancel", "money back", '
            '"wrong order", "missing item", "damaged"? If YES, did the agent response indicate '
            "escalation to a human team? Return PASS if escalated correctly or no keywords present, "
            "FAIL if keywords present but not escalated."
        ),
    },
    {
        "name": "Order Number Request",
        "description": "Check if agent asked for order number when missing",
        "check_prompt": (
            "Does the customer email ask about an order but NOT provide an order number? If YES, "
            "did the agent ask for the order number? Return PASS if order number was provided OR "
            "agent asked for it, FAIL if order-related query without number and agent did not ask."
        ),
    },
    {
        "name": "No Hallucinated Capabilities",
        "description": "Check if agent offered services that do not exist",
        "check_prompt": (
            'Did the agent offer any of these non-existent capabilities: "add to restock notification '
            'list", "contact courier on your behalf", "open investigation with DHL", "monitor parcel '
            'progress", "check shipping availability for your address"? Return PASS if none offered, '
            "FAIL if any offered."
        ),
    },
    {
        "name": "Attachment Acknowledgment",
        "description": "Check if agent acknowledged attachments when present",
        "check_prompt": (
            "Does the customer email mention or include attachments/images? If YES, did the agent "
            "acknowledge receiving them? Return PASS if acknowledged or no attachments, FAIL if "
            "attachments present but not acknowledged."
        ),
    },
    {
        "name": "No Generic Mismatch Response",
        "description": "Check if agent gave a generic response that does not match context",
        "check_prompt": (
            "Did the agent respond with generic phrases like \"You are most welcome! I'm glad I could "
            'provide the information you needed" when the customer did NOT ask a question or receive '
            "information? Return PASS if response matches context, FAIL if generic mismatch."
        ),
    },
    {
        "name": "Appropriate Tone for Sentiment",
        "description": "Check if agent matched tone to customer sentiment",
        "check_prompt": (
            'Is the customer frustrated (profanity, exclamation points, "unacceptable", "ridiculous")? '
            "If YES, did the agent open with empathy/apology? Return PASS if tone matched, FAIL if "
            "frustrated customer got no empathy."
        ),
    },
    {
        "name": "Confidence Acknowledgment",
        "description": "Check if agent admitted uncertainty when lacking info",
        "check_prompt": (
            "Did the agent make definitive claims about things it could not know (specific dates, "
            "inventory levels, carrier actions) without qualifying uncertainty? Return PASS if "
            "appropriately uncertain or had data, FAIL if made unverifiable claims confidently."
        ),
    },
    {
        "name": "No Prohibited Offers",
        "description": "Check if agent avoided offering prohibited actions",
        "check_prompt": (
            "Did the agent offer to: contact shipping courier, open immediate investigation, monitor "
            'parcel, frame delay as "problem with order" instead of "problem with shipping"? Return '
            "PASS if none offered, FAIL if any prohibited offer made."
        ),
    },
]

# (title, category) in wizard order
DEFAULT_WIZARD_STEPS = [
    ("Business Basics", "business_basics"),
    ("Policies", "policies"),
    ("Capabilities & Limitations", "capabilities_limitations"),
    ("Tone & Brand", "tone_brand"),
    ("Known Failure Patterns", "known_failure_patterns"),
    ("Escalation Triggers", "escalation_triggers"),
    ("Refund Handling", "refund_handling"),
]
